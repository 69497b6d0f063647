from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Author (projection of the user service's record) ---

class AuthorView(BaseModel):
    id: int = Field(gt=0)
    name: str
    email: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    model_config = ConfigDict(extra="ignore", frozen=True)


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = ""
    content: str = ""
    # Deprecated: the author is taken from the bearer credential.
    author_id: int | None = None


class ArticleUpdate(BaseModel):
    # An empty string keeps the stored value.
    title: str = ""
    content: str = ""


class ArticleResponse(BaseModel):
    id: int
    title: str
    content: str
    author_id: int
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ArticleWithAuthor(ArticleResponse):
    author: AuthorView | None = None


# --- Pagination ---

class ArticlePage(BaseModel):
    articles: list[ArticleWithAuthor]
    total: int
    page: int
    page_size: int
    total_pages: int


# --- Envelope ---

class Envelope(BaseModel):
    code: str
    message: str
    data: Any | None = None
