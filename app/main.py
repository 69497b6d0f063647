import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.blacklist import TokenBlacklist
from app.clients.user_client import UserServiceClient
from app.config import settings
from app.database import engine
from app.middleware import TimingMiddleware
from app.responses import install_exception_handlers
from app.retry import RetryPolicy
from app.routers import articles

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()

    blacklist = TokenBlacklist(settings.REDIS_URL)
    await blacklist.connect()  # App works without Redis

    user_client = UserServiceClient(
        settings.USER_SERVICE_URL,
        call_timeout=settings.USER_SERVICE_CALL_TIMEOUT,
        connect_timeout=settings.USER_SERVICE_CONNECT_TIMEOUT,
    )
    try:
        await user_client.connect()
    except Exception:
        logger.critical("User service unreachable at %s; aborting startup", settings.USER_SERVICE_URL)
        await blacklist.disconnect()
        raise

    app.state.blacklist = blacklist
    app.state.user_client = user_client
    app.state.retry_policy = RetryPolicy(
        max_attempts=settings.UPSTREAM_RETRY_ATTEMPTS,
        initial_backoff=settings.UPSTREAM_RETRY_INITIAL_BACKOFF,
        max_backoff=settings.UPSTREAM_RETRY_MAX_BACKOFF,
    )
    logger.info("Article service %s started (%s)", VERSION, settings.APP_ENV)
    yield
    # Shutdown
    await user_client.close()
    await blacklist.disconnect()
    await engine.dispose()


app = FastAPI(
    title="Article Service",
    description="Articles enriched with author data from the user service",
    version=VERSION,
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_exception_handlers(app)

# Routers
app.include_router(articles.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}
