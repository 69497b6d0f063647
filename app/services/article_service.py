"""
Article service — storage plus author enrichment from the user service.

Design notes
------------
- Author data is a nice-to-have on reads and a hard precondition on
  create.  Reads make exactly one lookup per distinct author and turn any
  outcome other than ``Found`` into a missing author; create verifies the
  author through the ``RetryPolicy`` and fails the request otherwise.
- Lookups for a page run concurrently under a semaphore.  Results are
  joined back by author id, so row order is exactly the storage order and
  one author's failure only affects that author's rows.
- Storage errors are classified here: ``NotFoundError`` passes through,
  ``IntegrityError`` becomes ``AlreadyExistsError`` and anything else
  becomes ``InternalError`` with a fixed message.
- Every storage call and upstream call runs under the request's
  ``Deadline``.
"""
import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.clients.outcomes import (
    FailureKind,
    Found,
    NotFound,
    PermanentFailure,
    TransientFailure,
    UpstreamOutcome,
    author_of,
)
from app.deadline import Deadline
from app.errors import (
    AlreadyExistsError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
)
from app.models import MAX_ID, TITLE_MAX_LENGTH, Article
from app.repository import ArticleRepository
from app.retry import RetryPolicy
from app.schemas import ArticlePage, ArticleResponse, ArticleWithAuthor, AuthorView

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

AUTHOR_NOT_FOUND_NOTICE = "success; author not found"
AUTHOR_UNAVAILABLE_NOTICE = "success; author information is temporarily unavailable"


class AuthorLookup(Protocol):
    async def fetch_author(self, author_id: int, deadline: Deadline | None = None) -> UpstreamOutcome:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_pagination(
    page: int | None,
    page_size: int | None,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> tuple[int, int]:
    """
    Clamp a requested page into range.

    A missing or non-positive page size falls back to the default, an
    oversized one is capped, and pages start at 1.
    """
    if not page_size or page_size <= 0:
        page_size = default_page_size
    page_size = min(page_size, max_page_size)
    if not page or page < 1:
        page = 1
    return page, page_size


def total_pages(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size


def _check_article_id(article_id: int) -> None:
    if article_id <= 0:
        raise InvalidArgumentError("article ID must be positive")
    # No row can have an id the column cannot store.
    if article_id > MAX_ID:
        raise NotFoundError(f"article with ID {article_id} not found")


def _check_title_length(title: str) -> None:
    if len(title) > TITLE_MAX_LENGTH:
        raise InvalidArgumentError(f"title must be at most {TITLE_MAX_LENGTH} characters")


def _enrich(article: Article, author: AuthorView | None) -> ArticleWithAuthor:
    return ArticleWithAuthor.model_validate(article).model_copy(update={"author": author})


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        logger.warning("Conflict while trying to %s: %s", action, exc.orig)
        raise AlreadyExistsError(f"failed to {action}: conflicting data") from exc
    except SQLAlchemyError as exc:
        logger.exception("Database error while trying to %s", action)
        raise InternalError(f"failed to {action}") from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ArticleService:
    def __init__(
        self,
        repository: ArticleRepository,
        authors: AuthorLookup,
        retry_policy: RetryPolicy,
        enrich_concurrency: int = 8,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._repo = repository
        self._authors = authors
        self._retry = retry_policy
        self._enrich_concurrency = max(1, enrich_concurrency)
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    # ------------------------------------------------------------------
    # Reads (graceful degradation)
    # ------------------------------------------------------------------

    async def get_article(
        self, article_id: int, deadline: Deadline | None = None
    ) -> tuple[ArticleWithAuthor, str | None]:
        """
        Return the article with its author, plus an advisory notice when
        the author could not be attached.

        The article lookup is a hard precondition; the author lookup is not
        retried and never fails the request.
        """
        deadline = deadline or Deadline.unbounded()
        _check_article_id(article_id)

        with _storage_errors("get article"):
            article = await deadline.run(self._repo.get_by_id(article_id))

        logger.debug("Fetching author: article_id=%d author_id=%d", article.id, article.author_id)
        outcome = await self._authors.fetch_author(article.author_id, deadline)
        author = author_of(outcome)
        if author is not None:
            return _enrich(article, author), None

        logger.info(
            "Returning article without author: article_id=%d author_id=%d outcome=%s",
            article.id,
            article.author_id,
            _describe(outcome),
        )
        notice = AUTHOR_NOT_FOUND_NOTICE if isinstance(outcome, NotFound) else AUTHOR_UNAVAILABLE_NOTICE
        return _enrich(article, None), notice

    async def list_articles(
        self,
        page: int | None = None,
        page_size: int | None = None,
        author_id: int | None = None,
        deadline: Deadline | None = None,
    ) -> ArticlePage:
        deadline = deadline or Deadline.unbounded()
        page, page_size = normalize_pagination(
            page, page_size, self._default_page_size, self._max_page_size
        )
        offset = (page - 1) * page_size

        with _storage_errors("list articles"):
            if author_id and author_id > MAX_ID:
                articles, total = [], 0
            elif author_id and author_id > 0:
                articles, total = await deadline.run(
                    self._repo.list_by_author(author_id, page_size, offset)
                )
            else:
                articles, total = await deadline.run(self._repo.list_all(page_size, offset))

        outcomes = await self._lookup_authors([a.author_id for a in articles], deadline)
        missing = sum(1 for outcome in outcomes.values() if not isinstance(outcome, Found))
        if missing:
            logger.info("Listed %d article(s) with %d author(s) unavailable", len(articles), missing)

        return ArticlePage(
            articles=[_enrich(a, author_of(outcomes[a.author_id])) for a in articles],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size),
        )

    async def _lookup_authors(
        self, author_ids: list[int], deadline: Deadline
    ) -> dict[int, UpstreamOutcome]:
        distinct = list(dict.fromkeys(author_ids))
        if not distinct:
            return {}
        semaphore = asyncio.Semaphore(self._enrich_concurrency)

        async def lookup(author_id: int) -> UpstreamOutcome:
            async with semaphore:
                return await self._authors.fetch_author(author_id, deadline)

        results = await asyncio.gather(*(lookup(a) for a in distinct), return_exceptions=True)

        outcomes: dict[int, UpstreamOutcome] = {}
        for author_id, result in zip(distinct, results):
            if isinstance(result, BaseException):
                logger.error("Author lookup crashed: author_id=%d error=%r", author_id, result)
                result = PermanentFailure(FailureKind.UNKNOWN, type(result).__name__)
            outcomes[author_id] = result
        return outcomes

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_article(
        self,
        caller_id: int,
        title: str,
        content: str,
        deadline: Deadline | None = None,
        requested_author_id: int | None = None,
    ) -> ArticleWithAuthor:
        """
        Create an article owned by the authenticated caller.

        The caller must exist in the user service.  A missing author is the
        caller's problem (invalid argument); a user service that stays
        unreachable after retries is ours (unavailable).
        """
        deadline = deadline or Deadline.unbounded()
        if requested_author_id and requested_author_id != caller_id:
            logger.warning(
                "Ignoring author_id=%d from request body; credential says %d",
                requested_author_id,
                caller_id,
            )

        if not title or not title.strip():
            raise InvalidArgumentError("title is required")
        if not content or not content.strip():
            raise InvalidArgumentError("content is required")
        _check_title_length(title)

        logger.debug("Verifying author exists: author_id=%d", caller_id)
        outcome = await self._retry.run(
            lambda: self._authors.fetch_author(caller_id, deadline), deadline
        )
        if isinstance(outcome, NotFound):
            raise InvalidArgumentError(f"user with ID {caller_id} not found")
        if isinstance(outcome, TransientFailure):
            logger.warning(
                "User service unavailable while creating article: author_id=%d kind=%s",
                caller_id,
                outcome.kind.value,
            )
            raise UnavailableError("user service is currently unavailable")
        if isinstance(outcome, PermanentFailure):
            logger.error(
                "User service failed while creating article: author_id=%d kind=%s detail=%s",
                caller_id,
                outcome.kind.value,
                outcome.detail,
            )
            raise InternalError("failed to verify author")

        with _storage_errors("create article"):
            article = await deadline.run(self._repo.create(title, content, caller_id))
        logger.info("Created article: article_id=%d author_id=%d", article.id, caller_id)
        return _enrich(article, outcome.author)

    async def update_article(
        self,
        caller_id: int,
        article_id: int,
        title: str = "",
        content: str = "",
        deadline: Deadline | None = None,
    ) -> ArticleResponse:
        """
        Partially update an article.  An empty field keeps its stored value.
        """
        deadline = deadline or Deadline.unbounded()
        _check_article_id(article_id)
        if not title.strip() and not content.strip():
            raise InvalidArgumentError("at least title or content must be provided")
        if title.strip():
            _check_title_length(title)

        with _storage_errors("update article"):
            existing = await deadline.run(self._repo.get_by_id(article_id))
            self._ensure_owner(existing, caller_id, "update")
            new_title = title if title.strip() else existing.title
            new_content = content if content.strip() else existing.content
            article = await deadline.run(self._repo.update(article_id, new_title, new_content))

        logger.info("Updated article: article_id=%d", article_id)
        return ArticleResponse.model_validate(article)

    async def delete_article(
        self, caller_id: int, article_id: int, deadline: Deadline | None = None
    ) -> ArticleResponse:
        """Delete an article and return the row as it was before deletion."""
        deadline = deadline or Deadline.unbounded()
        _check_article_id(article_id)

        with _storage_errors("delete article"):
            existing = await deadline.run(self._repo.get_by_id(article_id))
            self._ensure_owner(existing, caller_id, "delete")
            snapshot = ArticleResponse.model_validate(existing)
            await deadline.run(self._repo.delete(article_id))

        logger.info("Deleted article: article_id=%d", article_id)
        return snapshot

    @staticmethod
    def _ensure_owner(article: Article, caller_id: int, action: str) -> None:
        if article.author_id != caller_id:
            logger.warning(
                "Refusing to %s article_id=%d for caller %d (owner %d)",
                action,
                article.id,
                caller_id,
                article.author_id,
            )
            raise PermissionDeniedError(f"only the author can {action} this article")


def _describe(outcome: UpstreamOutcome) -> str:
    if isinstance(outcome, (TransientFailure, PermanentFailure)):
        return f"{type(outcome).__name__}({outcome.kind.value})"
    return type(outcome).__name__
