from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.deadline import Deadline
from app.dependencies import (
    PaginationParams,
    get_article_service,
    get_current_claims,
    get_deadline,
)
from app.responses import success
from app.schemas import ArticleCreate, ArticleUpdate, Envelope
from app.security import Claims
from app.services.article_service import ArticleService

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])


@router.get("", response_model=Envelope)
async def list_articles(
    pagination: PaginationParams = Depends(),
    service: ArticleService = Depends(get_article_service),
    deadline: Deadline = Depends(get_deadline),
):
    page = await service.list_articles(
        pagination.page_number, pagination.page_size, pagination.author_id, deadline
    )
    return success(page)


@router.get("/{article_id}", response_model=Envelope)
async def get_article(
    article_id: int,
    service: ArticleService = Depends(get_article_service),
    deadline: Deadline = Depends(get_deadline),
):
    article, notice = await service.get_article(article_id, deadline)
    return success({"article": article}, message=notice or "success")


@router.post("", status_code=201, response_model=Envelope)
async def create_article(
    data: ArticleCreate,
    claims: Claims = Depends(get_current_claims),
    service: ArticleService = Depends(get_article_service),
    deadline: Deadline = Depends(get_deadline),
):
    article = await service.create_article(
        claims.user_id,
        data.title,
        data.content,
        deadline,
        requested_author_id=data.author_id,
    )
    return JSONResponse(status_code=201, content=success({"article": article}))


@router.put("/{article_id}", response_model=Envelope)
async def update_article(
    article_id: int,
    data: ArticleUpdate,
    claims: Claims = Depends(get_current_claims),
    service: ArticleService = Depends(get_article_service),
    deadline: Deadline = Depends(get_deadline),
):
    article = await service.update_article(
        claims.user_id, article_id, data.title, data.content, deadline
    )
    return success({"article": article})


@router.delete("/{article_id}", response_model=Envelope)
async def delete_article(
    article_id: int,
    claims: Claims = Depends(get_current_claims),
    service: ArticleService = Depends(get_article_service),
    deadline: Deadline = Depends(get_deadline),
):
    article = await service.delete_article(claims.user_id, article_id, deadline)
    return success({"article": article, "deleted": True})
