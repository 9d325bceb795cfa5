"""Fixed-window, per-client rate limiting with a degraded local fallback.

The limiting algorithm (:class:`RateLimiter`) is written against a small
counter-store interface with two implementations:

    - RedisCounterStore: shared across instances and restarts; counters
      live in Redis and are incremented atomically by a Lua script
    - MemoryCounterStore: in-process dict, used when Redis is not
      available or cannot run the script

The store is chosen once at startup by :func:`select_counter_store` and
never re-evaluated per request. Switching stores discards prior counts.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import NoScriptError

from chapterapi.core.exceptions import (
    CounterStoreUnavailableError,
    UnsupportedCounterCommandError,
)
from chapterapi.services.cache import CacheClient

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 30
DEFAULT_WINDOW = 60  # seconds


@dataclass(frozen=True)
class WindowHit:
    """Counter value and time left in the current window."""

    count: int
    reset_after: float  # seconds


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of counting one request."""

    allowed: bool
    limit: int
    remaining: int
    reset_after: int  # whole seconds until the window resets


# =============================================================================
# Counter Stores
# =============================================================================


class CounterStore(ABC):
    """Storage for windowed request counters."""

    kind: str = "abstract"

    @abstractmethod
    async def increment(self, key: str, window: int) -> WindowHit:
        """Count one hit, opening a new ``window``-second window if none is live."""

    @abstractmethod
    async def read(self, key: str) -> WindowHit | None:
        """Current window for ``key``, or None if it has expired."""

    @abstractmethod
    async def expire(self, key: str, window: int) -> bool:
        """Restart the expiry of ``key``. False if there is no live counter."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Drop the counter for ``key``."""


@dataclass
class _LocalWindow:
    count: int
    expires_at: float


class MemoryCounterStore(CounterStore):
    """In-process counters.

    Mutations happen between await points on a single event loop, so no
    lock is required.
    """

    kind = "memory"
    SWEEP_THRESHOLD = 10_000

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, _LocalWindow] = {}

    async def increment(self, key: str, window: int) -> WindowHit:
        now = self._clock()
        entry = self._windows.get(key)
        if entry is None or now >= entry.expires_at:
            if len(self._windows) >= self.SWEEP_THRESHOLD:
                self._sweep(now)
            entry = _LocalWindow(count=0, expires_at=now + window)
            self._windows[key] = entry
        entry.count += 1
        return WindowHit(count=entry.count, reset_after=entry.expires_at - now)

    async def read(self, key: str) -> WindowHit | None:
        now = self._clock()
        entry = self._windows.get(key)
        if entry is None or now >= entry.expires_at:
            return None
        return WindowHit(count=entry.count, reset_after=entry.expires_at - now)

    async def expire(self, key: str, window: int) -> bool:
        now = self._clock()
        entry = self._windows.get(key)
        if entry is None or now >= entry.expires_at:
            return False
        entry.expires_at = now + window
        return True

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now >= w.expires_at]
        for k in expired:
            del self._windows[k]


# Atomic increment; the window starts with the first hit.
INCREMENT_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {current, ttl}
"""


class RedisCounterStore(CounterStore):
    """Counters shared through Redis.

    Every counter operation is expressed as a raw Redis command and sent
    through :meth:`send_command`, which only knows the commands this store
    needs. Anything else raises :class:`UnsupportedCounterCommandError`
    instead of silently producing wrong counts.
    """

    kind = "redis"

    def __init__(self, redis: Redis, *, timeout: float = 0.25) -> None:
        self._redis = redis
        self.timeout = timeout
        self._script_sha: str | None = None

    async def prepare(self) -> None:
        """Load the increment script.

        Raises:
            CounterStoreUnavailableError: If Redis cannot load scripts
        """
        try:
            self._script_sha = await self.send_command("SCRIPT LOAD", INCREMENT_SCRIPT)
        except Exception as e:
            raise CounterStoreUnavailableError(
                details={"error": str(e) or type(e).__name__}
            ) from e

    async def send_command(self, command: str, *args: Any) -> Any:
        """Translate a counter command into a Redis client call.

        Raises:
            UnsupportedCounterCommandError: For commands outside the
                supported set
        """
        name = command.upper()
        if name == "SCRIPT LOAD":
            call = self._redis.script_load(*args)
        elif name == "EVALSHA":
            call = self._redis.evalsha(*args)
        elif name == "GET":
            call = self._redis.get(*args)
        elif name == "PTTL":
            call = self._redis.pttl(*args)
        elif name == "EXPIRE":
            call = self._redis.expire(*args)
        elif name == "DEL":
            call = self._redis.delete(*args)
        else:
            raise UnsupportedCounterCommandError(command)
        return await asyncio.wait_for(call, timeout=self.timeout)

    async def increment(self, key: str, window: int) -> WindowHit:
        if self._script_sha is None:
            await self.prepare()
        try:
            count, ttl_ms = await self.send_command(
                "EVALSHA", self._script_sha, 1, key, window * 1000
            )
        except NoScriptError:
            # Script cache was flushed (e.g. Redis restart)
            await self.prepare()
            count, ttl_ms = await self.send_command(
                "EVALSHA", self._script_sha, 1, key, window * 1000
            )
        return WindowHit(count=int(count), reset_after=max(int(ttl_ms), 0) / 1000)

    async def read(self, key: str) -> WindowHit | None:
        value = await self.send_command("GET", key)
        if value is None:
            return None
        ttl_ms = await self.send_command("PTTL", key)
        return WindowHit(count=int(value), reset_after=max(int(ttl_ms), 0) / 1000)

    async def expire(self, key: str, window: int) -> bool:
        return bool(await self.send_command("EXPIRE", key, window))

    async def reset(self, key: str) -> None:
        await self.send_command("DEL", key)


async def select_counter_store(
    cache: CacheClient,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> CounterStore:
    """Pick the counter store once at startup.

    Prefers the shared Redis store; any failure while preparing it falls
    back to in-process counters so the server keeps serving traffic.
    """
    if not cache.available:
        logger.info(
            "rate_limit_store_selected",
            store=MemoryCounterStore.kind,
            reason="cache_unavailable",
        )
        return MemoryCounterStore(clock=clock)

    try:
        store = RedisCounterStore(cache.redis, timeout=cache.timeout)
        await store.prepare()
    except Exception as e:
        logger.warning(
            "rate_limit_store_fallback",
            store=MemoryCounterStore.kind,
            error=str(e) or type(e).__name__,
        )
        return MemoryCounterStore(clock=clock)

    logger.info("rate_limit_store_selected", store=store.kind)
    return store


# =============================================================================
# Limiter
# =============================================================================


class RateLimiter:
    """Allow ``limit`` requests per identifier per ``window`` seconds."""

    KEY_PREFIX = "ratelimit:"

    def __init__(
        self,
        store: CounterStore,
        *,
        limit: int = DEFAULT_LIMIT,
        window: int = DEFAULT_WINDOW,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window = window

    @property
    def policy(self) -> str:
        """Value of the ``RateLimit-Policy`` header, e.g. ``30;w=60``."""
        return f"{self.limit};w={self.window}"

    def key_for(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}{identifier}"

    async def hit(self, identifier: str) -> RateLimitResult:
        """Count a request from ``identifier``.

        Raises:
            Exception: Whatever the counter store raises; callers decide
                whether to fail open
        """
        hit = await self.store.increment(self.key_for(identifier), self.window)
        return RateLimitResult(
            allowed=hit.count <= self.limit,
            limit=self.limit,
            remaining=max(self.limit - hit.count, 0),
            reset_after=max(math.ceil(hit.reset_after), 0),
        )

    async def reset(self, identifier: str) -> None:
        await self.store.reset(self.key_for(identifier))
