import logging

from fastapi import Depends, Header, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.blacklist import TokenBlacklist
from app.clients.user_client import UserServiceClient
from app.config import settings
from app.database import get_db
from app.deadline import Deadline
from app.errors import TokenRevokedError, UnauthenticatedError, UnavailableError
from app.repository import SqlAlchemyArticleRepository
from app.retry import RetryPolicy
from app.security import Claims, TokenError, decode_token
from app.services.article_service import ArticleService

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)


class PaginationParams:
    """
    Reusable FastAPI dependency that collects list parameters.

    Values are passed through as given; out-of-range values are clamped by
    the service rather than rejected, so a caller asking for page 0 or
    1000 items still gets a page.

    Attributes
    ----------
    page_number:
        1-based page number (default 1).
    page_size:
        Items per page (default 10, clamped to [1, MAX_PAGE_SIZE]).
    author_id:
        Only list this author's articles; 0 or absent means no filter.
    """

    def __init__(
        self,
        page_number: int = Query(1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            description=f"Items per page (max {settings.MAX_PAGE_SIZE}).",
        ),
        author_id: int = Query(0, description="Filter by author; 0 lists all articles."),
    ) -> None:
        self.page_number = page_number
        self.page_size = page_size
        self.author_id = author_id


# ---------------------------------------------------------------------------
# Request deadline
# ---------------------------------------------------------------------------

def get_deadline(
    x_request_timeout: float | None = Header(
        None,
        description="Seconds the caller is willing to wait; capped by the server.",
    ),
) -> Deadline:
    timeout = settings.REQUEST_TIMEOUT_SECONDS
    if x_request_timeout is not None and x_request_timeout > 0:
        timeout = min(timeout, x_request_timeout)
    return Deadline(timeout)


# ---------------------------------------------------------------------------
# Process-lifetime collaborators (built in the lifespan, kept on app.state)
# ---------------------------------------------------------------------------

def get_user_client(request: Request) -> UserServiceClient:
    return request.app.state.user_client


def get_retry_policy(request: Request) -> RetryPolicy:
    return request.app.state.retry_policy


def get_blacklist(request: Request) -> TokenBlacklist:
    return request.app.state.blacklist


def get_article_service(
    db: AsyncSession = Depends(get_db),
    user_client: UserServiceClient = Depends(get_user_client),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> ArticleService:
    return ArticleService(
        SqlAlchemyArticleRepository(db),
        user_client,
        retry_policy,
        enrich_concurrency=settings.ENRICH_CONCURRENCY,
        default_page_size=settings.DEFAULT_PAGE_SIZE,
        max_page_size=settings.MAX_PAGE_SIZE,
    )


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    blacklist: TokenBlacklist = Depends(get_blacklist),
) -> Claims:
    """Resolve the bearer credential to its claims or raise a 014/016/015 error."""
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("authentication required")
    token = credentials.credentials
    try:
        claims = decode_token(token)
    except TokenError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise UnauthenticatedError("invalid or expired token") from exc

    try:
        revoked = await blacklist.is_revoked(token)
    except (RedisError, OSError) as exc:
        logger.error("Token revocation check failed: %s", exc)
        raise UnavailableError("unable to verify token status") from exc
    if revoked:
        raise TokenRevokedError("token has been revoked")
    return claims
