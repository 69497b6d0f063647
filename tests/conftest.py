"""
Test infrastructure for the article service.

Strategy
--------
- SQLite in-memory via aiosqlite with ``StaticPool`` so every task shares
  the one connection that holds the in-memory database.  Tables are
  created before and dropped after each test.
- The user service is simulated by ``FakeUserService`` behind an
  ``httpx.MockTransport``; tests switch it between healthy, down, timing
  out, overloaded and broken without any network.
- Retry backoff goes through ``RecordingSleep``, which records the delays
  and returns immediately, so retry timing is asserted without waiting.
- ``ASGITransport`` does not run the lifespan, so the ``async_client``
  fixture installs the process-lifetime collaborators on ``app.state``
  itself.  The token blacklist is left disconnected (check disabled)
  unless a test attaches ``StubRedis``.
"""
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.blacklist import TokenBlacklist
from app.clients.user_client import UserServiceClient
from app.database import Base, get_db
from app.main import app
from app.middleware import install_query_counter
from app.repository import SqlAlchemyArticleRepository
from app.retry import RetryPolicy
from app.security import create_access_token
from app.services.article_service import ArticleService

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
USER_SERVICE_URL = "http://users.test"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeUserService:
    """
    In-process stand-in for the user service's HTTP API.

    ``mode`` applies to every user lookup; ``overrides`` switches the
    behaviour for individual user ids and ``script`` queues modes for the
    next lookups, one per call.  Modes: ``up``, ``down`` (connection
    refused), ``timeout``, ``overloaded`` (503), ``throttled`` (429),
    ``broken`` (500), ``garbage`` (200 with an unusable body).
    """

    def __init__(self) -> None:
        self.users: dict[int, dict] = {}
        self.mode = "up"
        self.overrides: dict[int, str] = {}
        self.script: list[str] = []
        self.lookups: list[int] = []

    def add_user(self, user_id: int, name: str | None = None, email: str | None = None) -> dict:
        now = datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat()
        user = {
            "id": user_id,
            "name": name or f"User {user_id}",
            "email": email or f"user{user_id}@example.com",
            "created_at": now,
            "updated_at": now,
        }
        self.users[user_id] = user
        return user

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/health":
            if self.mode == "down":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"status": "healthy"})

        user_id = int(path.rsplit("/", 1)[-1])
        self.lookups.append(user_id)
        if self.script:
            mode = self.script.pop(0)
        else:
            mode = self.overrides.get(user_id, self.mode)
        if mode == "down":
            raise httpx.ConnectError("connection refused", request=request)
        if mode == "timeout":
            raise httpx.ReadTimeout("read timed out", request=request)
        if mode == "overloaded":
            return httpx.Response(503, json={"detail": "overloaded"})
        if mode == "throttled":
            return httpx.Response(429, json={"detail": "slow down"})
        if mode == "broken":
            return httpx.Response(500, json={"detail": "boom"})
        if mode == "garbage":
            return httpx.Response(200, content=b"<html>not json</html>")
        if user_id not in self.users:
            return httpx.Response(404, json={"detail": "User not found"})
        return httpx.Response(200, json=self.users[user_id])


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

    @property
    def total(self) -> float:
        return sum(self.delays)


class StubRedis:
    """Just enough of ``redis.asyncio.Redis`` for ``TokenBlacklist``."""

    def __init__(self, fail: bool = False) -> None:
        self.keys: dict[str, str] = {}
        self.fail = fail

    async def exists(self, key: str) -> int:
        if self.fail:
            raise ConnectionError("redis is down")
        return 1 if key in self.keys else 0

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.keys[key] = value

    async def aclose(self) -> None:
        pass


def auth_headers(user_id: int, email: str = "") -> dict[str, str]:
    token = create_access_token(user_id, email or f"user{user_id}@example.com")
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def fake_users() -> FakeUserService:
    service = FakeUserService()
    service.add_user(1, "Alice", "alice@example.com")
    service.add_user(2, "Bob", "bob@example.com")
    return service


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_policy(recorded_sleep: RecordingSleep) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_backoff=0.1, max_backoff=1.0, sleep=recorded_sleep)


@pytest_asyncio.fixture
async def user_client(fake_users: FakeUserService) -> UserServiceClient:
    client = UserServiceClient(
        USER_SERVICE_URL,
        call_timeout=0.5,
        connect_timeout=0.5,
        transport=httpx.MockTransport(fake_users.handler),
    )
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
def blacklist() -> TokenBlacklist:
    return TokenBlacklist("redis://unused")


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_test() as session:
        yield session


@pytest.fixture
def service(db_session: AsyncSession, user_client: UserServiceClient, retry_policy: RetryPolicy) -> ArticleService:
    return ArticleService(SqlAlchemyArticleRepository(db_session), user_client, retry_policy)


@pytest_asyncio.fixture
async def async_client(
    user_client: UserServiceClient,
    retry_policy: RetryPolicy,
    blacklist: TokenBlacklist,
) -> AsyncClient:
    app.state.user_client = user_client
    app.state.retry_policy = retry_policy
    app.state.blacklist = blacklist
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(name="auth_headers")
def auth_headers_fixture():
    """Factory for ``Authorization`` headers carrying a given user id."""
    return auth_headers


@pytest.fixture
def stub_redis(blacklist: TokenBlacklist) -> StubRedis:
    """Attach a working in-memory Redis stand-in to the blacklist."""
    stub = StubRedis()
    blacklist._redis = stub
    return stub
