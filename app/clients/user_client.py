"""
HTTP client for the user service.

Design notes
------------
- One ``httpx.AsyncClient`` is created per process and shared by all
  requests; ``connect()`` probes the service once at startup and a failure
  there is fatal.  Steady-state calls never raise for upstream problems:
  they return an ``UpstreamOutcome``.
- Each lookup is bounded by ``call_timeout`` or the caller's deadline,
  whichever is stricter.  The bound is enforced both through httpx's own
  timeouts and an outer ``asyncio.wait_for``, since httpx timeouts apply
  per network operation rather than to the call as a whole.
"""
import asyncio
import logging

import httpx
from pydantic import ValidationError

from app.clients.outcomes import (
    FailureKind,
    Found,
    NotFound,
    PermanentFailure,
    TransientFailure,
    UpstreamOutcome,
)
from app.deadline import Deadline
from app.middleware import record_upstream_call
from app.schemas import AuthorView

logger = logging.getLogger(__name__)

# HTTP status -> classification for non-2xx answers
_TRANSIENT_STATUSES: dict[int, FailureKind] = {
    408: FailureKind.DEADLINE_EXCEEDED,
    429: FailureKind.OVERLOADED,
    502: FailureKind.UNAVAILABLE,
    503: FailureKind.UNAVAILABLE,
    504: FailureKind.DEADLINE_EXCEEDED,
}
_PERMANENT_STATUSES: dict[int, FailureKind] = {
    400: FailureKind.INVALID_ARGUMENT,
    422: FailureKind.INVALID_ARGUMENT,
    500: FailureKind.INTERNAL,
}


class UpstreamConnectionError(RuntimeError):
    """The user service could not be reached at startup."""


class UserServiceClient:
    def __init__(
        self,
        base_url: str,
        call_timeout: float = 2.0,
        connect_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.call_timeout = call_timeout
        self.connect_timeout = connect_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the shared client and probe ``/health``.

        Raises ``UpstreamConnectionError`` when the service does not answer
        within ``connect_timeout``.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.call_timeout, connect=self.connect_timeout),
                transport=self._transport,
            )
        try:
            resp = await asyncio.wait_for(
                self._client.get("/health", timeout=self.connect_timeout),
                timeout=self.connect_timeout,
            )
            resp.raise_for_status()
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            await self.close()
            raise UpstreamConnectionError(
                f"failed to connect to user service at {self.base_url}"
            ) from exc
        logger.info("Connected to user service at %s", self.base_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def fetch_author(self, author_id: int, deadline: Deadline | None = None) -> UpstreamOutcome:
        """
        Look up *author_id* and classify the result.

        Only ``asyncio.CancelledError`` escapes; every upstream failure is
        returned as a ``TransientFailure`` or ``PermanentFailure``.
        """
        if self._client is None:
            return TransientFailure(FailureKind.UNAVAILABLE, "client is not connected")

        timeout = deadline.cap(self.call_timeout) if deadline is not None else self.call_timeout
        if timeout <= 0:
            return TransientFailure(FailureKind.DEADLINE_EXCEEDED, "deadline already passed")

        record_upstream_call()
        try:
            resp = await asyncio.wait_for(
                self._client.get(f"/api/v1/users/{author_id}", timeout=timeout),
                timeout=timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.info("User service timed out: author_id=%d timeout=%.3fs", author_id, timeout)
            return TransientFailure(FailureKind.DEADLINE_EXCEEDED, f"no answer within {timeout:.3f}s")
        except httpx.TransportError as exc:
            logger.info("User service unreachable: author_id=%d error=%s", author_id, exc)
            return TransientFailure(FailureKind.UNAVAILABLE, type(exc).__name__)

        return self._classify(author_id, resp)

    def _classify(self, author_id: int, resp: httpx.Response) -> UpstreamOutcome:
        if resp.status_code == 200:
            try:
                return Found(AuthorView.model_validate(resp.json()))
            except (ValueError, ValidationError):
                logger.warning("Malformed author payload: author_id=%d", author_id)
                return PermanentFailure(FailureKind.MALFORMED, "payload does not match AuthorView")
        if resp.status_code == 404:
            return NotFound(author_id)
        if resp.status_code in _TRANSIENT_STATUSES:
            kind = _TRANSIENT_STATUSES[resp.status_code]
            logger.info("User service transient failure: author_id=%d status=%d", author_id, resp.status_code)
            return TransientFailure(kind, f"HTTP {resp.status_code}")
        kind = _PERMANENT_STATUSES.get(resp.status_code, FailureKind.UNKNOWN)
        logger.warning("User service error: author_id=%d status=%d", author_id, resp.status_code)
        return PermanentFailure(kind, f"HTTP {resp.status_code}")
