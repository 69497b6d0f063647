"""
Storage contract for articles and its SQLAlchemy adapter.

The service layer depends on ``ArticleRepository`` only.  Adapters raise
``NotFoundError`` for missing rows and let every other database error
propagate as a ``SQLAlchemyError`` for the service to classify.
"""
from typing import Protocol

from sqlalchemy import delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError
from app.models import Article


class ArticleRepository(Protocol):
    async def get_by_id(self, article_id: int) -> Article:
        """Return the article or raise ``NotFoundError``."""
        ...

    async def create(self, title: str, content: str, author_id: int) -> Article:
        ...

    async def update(self, article_id: int, title: str, content: str) -> Article:
        """Overwrite title and content; raise ``NotFoundError`` if absent."""
        ...

    async def delete(self, article_id: int) -> None:
        """Remove the article; raise ``NotFoundError`` if absent."""
        ...

    async def list_by_author(self, author_id: int, limit: int, offset: int) -> tuple[list[Article], int]:
        """Return one page of *author_id*'s articles plus their total count."""
        ...

    async def list_all(self, limit: int, offset: int) -> tuple[list[Article], int]:
        ...


class SqlAlchemyArticleRepository:
    """
    ``ArticleRepository`` over an ``AsyncSession``.

    Writes are flushed, not committed; the transaction belongs to the
    ``get_db`` dependency.  Lists are ordered newest first with the id as a
    tie-breaker so pages are stable.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, article_id: int) -> Article:
        result = await self.db.execute(select(Article).where(Article.id == article_id))
        article = result.scalar_one_or_none()
        if article is None:
            raise NotFoundError(f"article with ID {article_id} not found")
        return article

    async def create(self, title: str, content: str, author_id: int) -> Article:
        article = Article(title=title, content=content, author_id=author_id)
        self.db.add(article)
        await self.db.flush()
        return article

    async def update(self, article_id: int, title: str, content: str) -> Article:
        article = await self.get_by_id(article_id)
        article.title = title
        article.content = content
        await self.db.flush()
        return article

    async def delete(self, article_id: int) -> None:
        result = await self.db.execute(delete(Article).where(Article.id == article_id))
        if result.rowcount == 0:
            raise NotFoundError(f"article with ID {article_id} not found")
        await self.db.flush()

    async def list_by_author(self, author_id: int, limit: int, offset: int) -> tuple[list[Article], int]:
        return await self._page(limit, offset, Article.author_id == author_id)

    async def list_all(self, limit: int, offset: int) -> tuple[list[Article], int]:
        return await self._page(limit, offset)

    async def _page(self, limit: int, offset: int, *criteria) -> tuple[list[Article], int]:
        count_q = select(func.count()).select_from(Article)
        rows_q = select(Article)
        if criteria:
            count_q = count_q.where(*criteria)
            rows_q = rows_q.where(*criteria)

        total: int = (await self.db.execute(count_q)).scalar_one()
        # Past the last row; also keeps huge offsets out of the bind parameters.
        if offset >= total:
            return [], total

        rows_q = (
            rows_q.order_by(desc(Article.created_at), desc(Article.id))
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(rows_q)
        return list(result.scalars().all()), total
