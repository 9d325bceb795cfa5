"""CacheClient - the single, best-effort handle on the Redis cache.

Every consumer (the listing middleware, the chapter handlers and the
rate limiter) goes through one ``CacheClient`` that is constructed in the
application lifespan and stored on ``app.state.cache``. Its connection
state is resolved before the server accepts traffic:

    - READY: Redis answered a ping at startup
    - UNAVAILABLE: no REDIS_URL configured, or the startup ping failed
    - PENDING: constructed but ``connect()`` has not finished yet

Only READY clients talk to Redis. A failed call on a READY client is a
transient failure: it is logged and reported as a miss/``False``, the
client stays READY.

Operations never raise. Each one is bounded by ``timeout`` so a slow
cache can never make a request slower than computing the answer live.
"""

import asyncio
from enum import Enum

import structlog
from fastapi import Request
from redis.asyncio import Redis

from chapterapi.config import Settings

logger = structlog.get_logger(__name__)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class CacheState(str, Enum):
    """Connection state of the cache client."""

    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class CacheClient:
    """Redis wrapper with get / set-with-expiry / delete that never raises.

    Usage with FastAPI:
        ```python
        from chapterapi.services.cache import CacheClient, get_cache_client

        @router.get("/chapters")
        async def list_chapters(cache: CacheClient = Depends(get_cache_client)):
            ...
        ```
    """

    DEFAULT_TIMEOUT = 0.25  # seconds

    def __init__(
        self, redis: Redis | None, *, timeout: float = DEFAULT_TIMEOUT
    ) -> None:
        """Initialize the cache client.

        Args:
            redis: Async Redis client, or None when caching is disabled
            timeout: Upper bound for each cache operation in seconds
        """
        self._redis = redis
        self.timeout = timeout
        self.state = CacheState.PENDING if redis is not None else CacheState.UNAVAILABLE

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheClient":
        """Build a client from REDIS_URL (unavailable when it is unset)."""
        if not settings.redis_url:
            return cls(None, timeout=settings.cache_timeout_seconds)

        redis = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.cache_timeout_seconds,
            socket_timeout=settings.cache_timeout_seconds,
        )
        return cls(redis, timeout=settings.cache_timeout_seconds)

    @property
    def available(self) -> bool:
        """True once the startup ping succeeded."""
        return self.state == CacheState.READY and self._redis is not None

    @property
    def redis(self) -> Redis | None:
        """The underlying client, for adapters that need raw commands."""
        return self._redis if self.available else None

    async def connect(self) -> CacheState:
        """Resolve the connection state with a single ping.

        Returns:
            The resolved state (READY or UNAVAILABLE)
        """
        if self._redis is None:
            self.state = CacheState.UNAVAILABLE
            logger.info("cache_disabled", reason="no_redis_url")
            return self.state

        try:
            await asyncio.wait_for(self._redis.ping(), timeout=self.timeout)
        except Exception as e:
            self.state = CacheState.UNAVAILABLE
            logger.warning("cache_connect_failed", error=_describe(e))
        else:
            self.state = CacheState.READY
            logger.info("cache_connected")
        return self.state

    async def get(self, key: str) -> str | None:
        """Get a value.

        Returns:
            The stored string, or None on miss, unavailability or failure
        """
        if not self.available:
            return None
        try:
            return await asyncio.wait_for(self._redis.get(key), timeout=self.timeout)
        except Exception as e:
            logger.warning("cache_get_failed", cache_key=key, error=_describe(e))
            return None

    async def set_with_expiry(self, key: str, ttl: int, value: str) -> bool:
        """Store a value that expires after ``ttl`` seconds (atomic SETEX).

        Returns:
            True if the value was stored
        """
        if not self.available:
            return False
        try:
            await asyncio.wait_for(
                self._redis.setex(key, ttl, value), timeout=self.timeout
            )
        except Exception as e:
            logger.warning("cache_set_failed", cache_key=key, error=_describe(e))
            return False
        logger.debug("cache_set", cache_key=key, ttl=ttl)
        return True

    async def delete(self, key: str) -> bool:
        """Delete a key. Deleting a missing key counts as success.

        Returns:
            True if the delete reached Redis
        """
        if not self.available:
            return False
        try:
            await asyncio.wait_for(self._redis.delete(key), timeout=self.timeout)
        except Exception as e:
            logger.warning(
                "cache_delete_failed", cache_key=key, error=_describe(e)
            )
            return False
        logger.debug("cache_deleted", cache_key=key)
        return True

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is None:
            return
        try:
            await self._redis.aclose()
        except Exception as e:
            logger.warning("cache_close_failed", error=str(e))
        self.state = CacheState.UNAVAILABLE


def get_cache_client(request: Request) -> CacheClient:
    """FastAPI dependency returning the client built during startup.

    Falls back to an unavailable client if startup never ran, so handlers
    behave exactly as without a cache.
    """
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        return CacheClient(None)
    return cache
