import asyncio
import logging
from collections.abc import Awaitable, Callable

from app.clients.outcomes import TransientFailure, UpstreamOutcome
from app.deadline import Deadline
from app.errors import RequestCancelledError

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Bounded exponential-backoff retry for a single upstream call.

    Only ``TransientFailure`` outcomes are retried.  The delay starts at
    *initial_backoff*, is multiplied by *multiplier* after every retry and
    never exceeds *max_backoff*.  After *max_attempts* the last outcome is
    returned as-is.

    The sleep only suspends the calling task.  ``asyncio.CancelledError``
    raised while sleeping propagates untouched, and a deadline that cannot
    cover the next delay raises ``RequestCancelledError`` before sleeping.
    A transient failure that arrives once the deadline has passed raises it
    as well.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 1.0,
        multiplier: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if initial_backoff < 0 or max_backoff < initial_backoff:
            raise ValueError("backoff must satisfy 0 <= initial_backoff <= max_backoff")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        self._max_attempts = max_attempts
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._multiplier = multiplier
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delays(self) -> list[float]:
        """Backoff delays slept between attempts, in order."""
        delays = []
        delay = self._initial_backoff
        for _ in range(self._max_attempts - 1):
            delays.append(delay)
            delay = min(delay * self._multiplier, self._max_backoff)
        return delays

    async def run(
        self,
        operation: Callable[[], Awaitable[UpstreamOutcome]],
        deadline: Deadline | None = None,
    ) -> UpstreamOutcome:
        delays = self.delays()
        attempt = 1
        while True:
            outcome = await operation()
            if not isinstance(outcome, TransientFailure):
                return outcome
            if deadline is not None and deadline.expired:
                # The caller ran out of time, not the upstream.
                logger.info("Deadline expired during attempt %d; aborting", attempt)
                raise RequestCancelledError("deadline exceeded")
            if attempt == self._max_attempts:
                logger.warning(
                    "Giving up after %d attempt(s): last failure=%s",
                    attempt,
                    outcome.kind.value,
                )
                return outcome

            delay = delays[attempt - 1]
            if deadline is not None and not deadline.allows(delay):
                logger.info("Deadline leaves no room for retry %d; aborting", attempt + 1)
                raise RequestCancelledError("deadline exceeded while retrying")
            logger.info(
                "Attempt %d/%d failed (%s); retrying in %.3fs",
                attempt,
                self._max_attempts,
                outcome.kind.value,
                delay,
            )
            await self._sleep(delay)
            attempt += 1
