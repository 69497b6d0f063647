import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class TokenBlacklist:
    """
    Read side of the token revocation list the user service writes on
    logout (keys ``blacklist:<token>``).

    If Redis cannot be reached at startup the check is disabled and every
    token is treated as live.  Once connected, Redis errors during a check
    propagate as ``RedisError`` so the caller can fail closed.
    """

    KEY_PREFIX = "blacklist:"

    def __init__(self, url: str) -> None:
        self.url = url
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        client = redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed, token revocation check disabled: %s", exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Redis connected: %s", self.url)

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def is_revoked(self, token: str) -> bool:
        if not self._redis:
            return False
        exists = await self._redis.exists(self.KEY_PREFIX + token)
        if exists:
            logger.info("Rejected revoked token: %s...", token[:20])
        return bool(exists)

    async def revoke(self, token: str, ttl: int | None = None) -> None:
        """Add *token* to the list; used by tooling and tests."""
        if not self._redis:
            return
        await self._redis.set(self.KEY_PREFIX + token, "1", ex=ttl)
