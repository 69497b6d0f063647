"""
UserServiceClient tests — classification of every upstream answer, the
per-call timeout, and the startup connection contract.
"""
import asyncio

import httpx
import pytest

from app.clients.outcomes import (
    FailureKind,
    Found,
    NotFound,
    PermanentFailure,
    TransientFailure,
    author_of,
)
from app.clients.user_client import UpstreamConnectionError, UserServiceClient
from app.deadline import Deadline

AUTHOR = {
    "id": 5,
    "name": "Eve",
    "email": "eve@example.com",
    "created_at": "2024-01-01T00:00:00+00:00",
    "updated_at": "2024-01-02T00:00:00+00:00",
}


def _client(handler, call_timeout: float = 0.5) -> UserServiceClient:
    def routed(request: httpx.Request):
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        return handler(request)

    return UserServiceClient(
        "http://users.test",
        call_timeout=call_timeout,
        connect_timeout=0.5,
        transport=httpx.MockTransport(routed),
    )


async def _fetch(handler, author_id: int = 5, **kwargs):
    client = _client(handler, **kwargs)
    await client.connect()
    try:
        return await client.fetch_author(author_id)
    finally:
        await client.close()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_found():
    outcome = await _fetch(lambda request: httpx.Response(200, json=AUTHOR))
    assert isinstance(outcome, Found)
    assert outcome.author.id == 5
    assert outcome.author.email == "eve@example.com"
    assert author_of(outcome) is outcome.author


@pytest.mark.asyncio
async def test_request_path():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, json=AUTHOR)

    await _fetch(handler)
    assert seen == ["/api/v1/users/5"]


@pytest.mark.asyncio
async def test_not_found_is_an_outcome():
    outcome = await _fetch(lambda request: httpx.Response(404), author_id=8)
    assert outcome == NotFound(8)
    assert author_of(outcome) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status,kind", [
    (408, FailureKind.DEADLINE_EXCEEDED),
    (429, FailureKind.OVERLOADED),
    (502, FailureKind.UNAVAILABLE),
    (503, FailureKind.UNAVAILABLE),
    (504, FailureKind.DEADLINE_EXCEEDED),
])
async def test_transient_statuses(status, kind):
    outcome = await _fetch(lambda request: httpx.Response(status))
    assert isinstance(outcome, TransientFailure)
    assert outcome.kind is kind


@pytest.mark.asyncio
@pytest.mark.parametrize("status,kind", [
    (400, FailureKind.INVALID_ARGUMENT),
    (422, FailureKind.INVALID_ARGUMENT),
    (500, FailureKind.INTERNAL),
    (301, FailureKind.UNKNOWN),
    (418, FailureKind.UNKNOWN),
])
async def test_permanent_statuses(status, kind):
    outcome = await _fetch(lambda request: httpx.Response(status))
    assert isinstance(outcome, PermanentFailure)
    assert outcome.kind is kind


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    b"not json",
    b"[1, 2, 3]",
    b'{"id": 5}',
    b'{"id": -1, "name": "x", "email": "y"}',
])
async def test_malformed_payload(body):
    outcome = await _fetch(lambda request: httpx.Response(200, content=body))
    assert isinstance(outcome, PermanentFailure)
    assert outcome.kind is FailureKind.MALFORMED


@pytest.mark.asyncio
async def test_connection_refused_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    outcome = await _fetch(handler)
    assert outcome == TransientFailure(FailureKind.UNAVAILABLE, "ConnectError")


@pytest.mark.asyncio
async def test_transport_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    outcome = await _fetch(handler)
    assert isinstance(outcome, TransientFailure)
    assert outcome.kind is FailureKind.DEADLINE_EXCEEDED


# ---------------------------------------------------------------------------
# Timeouts and deadlines
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_call_timeout_bounds_slow_upstream():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=AUTHOR)

    outcome = await _fetch(handler, call_timeout=0.05)
    assert isinstance(outcome, TransientFailure)
    assert outcome.kind is FailureKind.DEADLINE_EXCEEDED


@pytest.mark.asyncio
async def test_caller_deadline_is_stricter_than_call_timeout():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=AUTHOR)

    client = _client(handler, call_timeout=30)
    await client.connect()
    try:
        loop = asyncio.get_running_loop()
        started = loop.time()
        outcome = await client.fetch_author(5, Deadline(0.05))
        elapsed = loop.time() - started
    finally:
        await client.close()
    assert isinstance(outcome, TransientFailure)
    assert elapsed < 2


@pytest.mark.asyncio
async def test_expired_deadline_skips_network():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=AUTHOR)

    client = _client(handler)
    await client.connect()
    try:
        outcome = await client.fetch_author(5, Deadline(0))
    finally:
        await client.close()
    assert outcome.kind is FailureKind.DEADLINE_EXCEEDED
    assert calls == []


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_failure_is_fatal():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = UserServiceClient("http://users.test", transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamConnectionError):
        await client.connect()
    assert not client.connected


@pytest.mark.asyncio
async def test_connect_unhealthy_is_fatal():
    client = UserServiceClient(
        "http://users.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    with pytest.raises(UpstreamConnectionError):
        await client.connect()


@pytest.mark.asyncio
async def test_fetch_before_connect_is_transient():
    client = UserServiceClient("http://users.test")
    outcome = await client.fetch_author(1)
    assert isinstance(outcome, TransientFailure)
    assert outcome.kind is FailureKind.UNAVAILABLE


@pytest.mark.asyncio
async def test_close_is_idempotent():
    client = _client(lambda request: httpx.Response(200, json=AUTHOR))
    await client.connect()
    await client.close()
    await client.close()
    assert not client.connected
