import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass

from sqlalchemy import event
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-request counters
# ---------------------------------------------------------------------------

@dataclass
class RequestStats:
    """
    Mutable counters for one request.

    The context variable holds a reference to this object rather than the
    integers themselves, so author lookups fanned out with
    ``asyncio.gather`` (which run in copied contexts) still update the
    counters of the request that spawned them.
    """

    queries: int = 0
    upstream_calls: int = 0


request_stats_var: ContextVar[RequestStats | None] = ContextVar("request_stats", default=None)


def record_query() -> None:
    stats = request_stats_var.get()
    if stats is not None:
        stats.queries += 1


def record_upstream_call() -> None:
    stats = request_stats_var.get()
    if stats is not None:
        stats.upstream_calls += 1


def install_query_counter(engine) -> None:
    """
    Register a ``before_cursor_execute`` listener on *engine* that counts
    every SQL statement against the current request.

    Must be called once per engine (production engine in ``database.py``,
    test engine in ``conftest.py``).
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        record_query()


# ---------------------------------------------------------------------------
# Middleware (pure ASGI, so ContextVar state is visible after the response)
# ---------------------------------------------------------------------------

class TimingMiddleware:
    """
    Pure ASGI middleware that adds diagnostic response headers:

    - ``X-Response-Time-Ms``: wall-clock time for the entire request.
    - ``X-Query-Count``: SQL statements executed during the request.
    - ``X-Upstream-Calls``: calls made to the user service, which makes
      enrichment fan-out and create-path retries visible to clients.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        stats = RequestStats()
        token = request_stats_var.set(stats)
        start = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(stats.queries).encode()))
                headers.append((b"x-upstream-calls", str(stats.upstream_calls).encode()))
                message["headers"] = headers
                logger.debug(
                    "%s %s -> %s in %.2fms (queries=%d, upstream_calls=%d)",
                    scope.get("method"),
                    scope.get("path"),
                    message.get("status"),
                    duration_ms,
                    stats.queries,
                    stats.upstream_calls,
                )
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_stats_var.reset(token)
