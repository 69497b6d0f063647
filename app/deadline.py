import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from app.errors import RequestCancelledError

T = TypeVar("T")


class Deadline:
    """
    A caller-supplied point in time after which the request is abandoned.

    ``Deadline(None)`` never expires.  The clock is injectable so tests can
    move time forward without sleeping.
    """

    def __init__(self, timeout: float | None, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> float | None:
        """Seconds left, ``None`` when unbounded, never negative."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def cap(self, timeout: float) -> float:
        """Return the stricter of *timeout* and the time remaining."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def allows(self, delay: float) -> bool:
        """Whether waiting *delay* seconds still leaves time to do work."""
        remaining = self.remaining()
        return remaining is None or remaining > delay

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await *awaitable*, abandoning it when the deadline passes.

        Raises ``RequestCancelledError`` on expiry.
        """
        remaining = self.remaining()
        if remaining is None:
            return await awaitable
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelledError("deadline exceeded")
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise RequestCancelledError("deadline exceeded") from exc

    def __repr__(self) -> str:
        return f"<Deadline remaining={self.remaining()}>"
