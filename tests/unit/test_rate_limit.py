"""Tests for the rate limiter and its counter stores."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import NoScriptError, ResponseError

from chapterapi.core.exceptions import (
    CounterStoreUnavailableError,
    UnsupportedCounterCommandError,
)
from chapterapi.services.cache import CacheClient
from chapterapi.services.rate_limit import (
    INCREMENT_SCRIPT,
    MemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    WindowHit,
    select_counter_store,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def memory_store(clock) -> MemoryCounterStore:
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def scripting_redis() -> MagicMock:
    """Mock Redis that supports the commands of the shared counter store."""
    redis = MagicMock()
    redis.ping = AsyncMock(return_value=True)
    redis.script_load = AsyncMock(return_value="abc123")
    redis.evalsha = AsyncMock(return_value=[1, 60000])
    redis.get = AsyncMock(return_value="4")
    redis.pttl = AsyncMock(return_value=12500)
    redis.expire = AsyncMock(return_value=1)
    redis.delete = AsyncMock(return_value=1)
    return redis


# =============================================================================
# MemoryCounterStore Tests
# =============================================================================


class TestMemoryCounterStore:
    """Tests for the in-process fallback store."""

    @pytest.mark.asyncio
    async def test_increment_counts_within_window(
        self, memory_store: MemoryCounterStore, clock
    ) -> None:
        first = await memory_store.increment("ratelimit:1.2.3.4", 60)
        clock.advance(10)
        second = await memory_store.increment("ratelimit:1.2.3.4", 60)

        assert first == WindowHit(count=1, reset_after=60)
        assert second == WindowHit(count=2, reset_after=50)

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(
        self, memory_store: MemoryCounterStore, clock
    ) -> None:
        await memory_store.increment("k", 60)
        await memory_store.increment("k", 60)

        clock.advance(60)
        hit = await memory_store.increment("k", 60)

        assert hit.count == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, memory_store: MemoryCounterStore) -> None:

        await memory_store.increment("a", 60)
        hit = await memory_store.increment("b", 60)

        assert hit.count == 1

    @pytest.mark.asyncio
    async def test_read(self, memory_store: MemoryCounterStore, clock) -> None:

        assert await memory_store.read("k") is None

        await memory_store.increment("k", 60)
        clock.advance(15)
        assert await memory_store.read("k") == WindowHit(count=1, reset_after=45)

        clock.advance(45)
        assert await memory_store.read("k") is None

    @pytest.mark.asyncio
    async def test_expire_extends_live_window(
        self, memory_store: MemoryCounterStore, clock
    ) -> None:
        assert await memory_store.expire("k", 60) is False

        await memory_store.increment("k", 60)
        clock.advance(50)
        assert await memory_store.expire("k", 60) is True

        clock.advance(50)
        hit = await memory_store.read("k")
        assert hit is not None
        assert hit.count == 1

    @pytest.mark.asyncio
    async def test_reset(self, memory_store: MemoryCounterStore) -> None:

        await memory_store.increment("k", 60)
        await memory_store.reset("k")

        assert await memory_store.read("k") is None

    @pytest.mark.asyncio
    async def test_expired_windows_are_swept(self, clock) -> None:

        store = MemoryCounterStore(clock=clock)
        store.SWEEP_THRESHOLD = 3
        for key in ("a", "b", "c"):
            await store.increment(key, 60)

        clock.advance(61)
        await store.increment("d", 60)

        assert set(store._windows) == {"d"}


# =============================================================================
# RedisCounterStore Tests
# =============================================================================


class TestRedisCounterStore:
    """Tests for the shared store's command translation."""

    @pytest.mark.asyncio
    async def test_prepare_loads_script(self, scripting_redis: MagicMock) -> None:

        store = RedisCounterStore(scripting_redis)
        await store.prepare()

        scripting_redis.script_load.assert_awaited_once_with(INCREMENT_SCRIPT)

    @pytest.mark.asyncio
    async def test_prepare_without_scripting_support(
        self, scripting_redis: MagicMock
    ) -> None:
        scripting_redis.script_load.side_effect = ResponseError("unknown command")
        store = RedisCounterStore(scripting_redis)

        with pytest.raises(CounterStoreUnavailableError):
            await store.prepare()

    @pytest.mark.asyncio
    async def test_increment_runs_script(self, scripting_redis: MagicMock) -> None:

        store = RedisCounterStore(scripting_redis)
        await store.prepare()

        hit = await store.increment("ratelimit:1.2.3.4", 60)

        assert hit == WindowHit(count=1, reset_after=60.0)
        scripting_redis.evalsha.assert_awaited_once_with(
            "abc123", 1, "ratelimit:1.2.3.4", 60000
        )

    @pytest.mark.asyncio
    async def test_increment_reloads_flushed_script(
        self, scripting_redis: MagicMock
    ) -> None:
        scripting_redis.evalsha.side_effect = [NoScriptError("NOSCRIPT"), [3, 30000]]
        store = RedisCounterStore(scripting_redis)
        await store.prepare()

        hit = await store.increment("k", 60)

        assert hit.count == 3
        assert scripting_redis.script_load.await_count == 2

    @pytest.mark.asyncio
    async def test_read(self, scripting_redis: MagicMock) -> None:

        store = RedisCounterStore(scripting_redis)

        assert await store.read("k") == WindowHit(count=4, reset_after=12.5)

        scripting_redis.get.return_value = None
        assert await store.read("k") is None

    @pytest.mark.asyncio
    async def test_expire_and_reset(self, scripting_redis: MagicMock) -> None:

        store = RedisCounterStore(scripting_redis)

        assert await store.expire("k", 60) is True
        await store.reset("k")

        scripting_redis.expire.assert_awaited_once_with("k", 60)
        scripting_redis.delete.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_unsupported_command(self, scripting_redis: MagicMock) -> None:

        store = RedisCounterStore(scripting_redis)

        with pytest.raises(UnsupportedCounterCommandError) as exc_info:
            await store.send_command("INCRBYFLOAT", "k", 1.5)

        assert exc_info.value.command == "INCRBYFLOAT"


class TestRedisCounterStoreScript:
    """The increment script against a Redis that executes Lua."""

    @pytest.mark.asyncio
    async def test_first_hit_sets_window_expiry(self, lua_redis) -> None:
        store = RedisCounterStore(lua_redis)

        hit = await store.increment("ratelimit:1.2.3.4", 60)

        assert hit.count == 1
        assert 0 < hit.reset_after <= 60
        assert 0 < await lua_redis.ttl("ratelimit:1.2.3.4") <= 60

    @pytest.mark.asyncio
    async def test_later_hits_keep_window(self, lua_redis) -> None:
        store = RedisCounterStore(lua_redis)

        for _ in range(4):
            hit = await store.increment("k", 60)

        assert hit.count == 4
        assert 0 < hit.reset_after <= 60

    @pytest.mark.asyncio
    async def test_read_after_increments(self, lua_redis) -> None:
        store = RedisCounterStore(lua_redis)
        assert await store.read("k") is None

        for _ in range(31):
            await store.increment("k", 60)
        hit = await store.read("k")

        assert hit is not None
        assert hit.count == 31
        assert 0 < hit.reset_after <= 60

    @pytest.mark.asyncio
    async def test_reset_clears_counter(self, lua_redis) -> None:
        store = RedisCounterStore(lua_redis)
        await store.increment("k", 60)

        await store.reset("k")

        assert await store.read("k") is None
        assert (await store.increment("k", 60)).count == 1

    @pytest.mark.asyncio
    async def test_reloads_script_after_flush(self, lua_redis) -> None:
        store = RedisCounterStore(lua_redis)
        await store.increment("k", 60)

        await lua_redis.script_flush()

        assert (await store.increment("k", 60)).count == 2


# =============================================================================
# Store Selection Tests
# =============================================================================


class TestSelectCounterStore:
    """Tests for the one-time startup choice between shared and local."""

    @pytest.mark.asyncio
    async def test_uses_redis_when_available(self, scripting_redis: MagicMock) -> None:

        cache = CacheClient(scripting_redis)
        await cache.connect()

        store = await select_counter_store(cache)

        assert isinstance(store, RedisCounterStore)
        assert store.kind == "redis"

    @pytest.mark.asyncio
    async def test_uses_scripting_redis(self, lua_redis) -> None:
        cache = CacheClient(lua_redis)
        await cache.connect()

        store = await select_counter_store(cache)

        assert isinstance(store, RedisCounterStore)
        assert (await store.increment("k", 60)).count == 1

    @pytest.mark.asyncio
    async def test_falls_back_when_cache_unavailable(self) -> None:
        store = await select_counter_store(CacheClient(None))

        assert isinstance(store, MemoryCounterStore)

    @pytest.mark.asyncio
    async def test_falls_back_when_scripts_unsupported(
        self, scripting_redis: MagicMock
    ) -> None:
        scripting_redis.script_load.side_effect = ResponseError("unknown command")
        cache = CacheClient(scripting_redis)
        await cache.connect()

        store = await select_counter_store(cache)

        assert isinstance(store, MemoryCounterStore)

    @pytest.mark.asyncio
    async def test_falls_back_for_incompatible_client(self) -> None:
        # A client object with no scripting methods at all
        redis = MagicMock(spec=["ping", "get", "setex", "delete"])
        redis.ping = AsyncMock(return_value=True)
        cache = CacheClient(redis)
        await cache.connect()

        store = await select_counter_store(cache)

        assert isinstance(store, MemoryCounterStore)


# =============================================================================
# RateLimiter Tests
# =============================================================================


class TestRateLimiter:
    """Tests for the fixed-window algorithm."""

    @pytest.mark.asyncio
    async def test_boundary(self, memory_store: MemoryCounterStore) -> None:

        limiter = RateLimiter(memory_store, limit=30, window=60)

        results = [await limiter.hit("1.2.3.4") for _ in range(31)]

        assert all(r.allowed for r in results[:30])
        assert results[29].remaining == 0
        assert results[30].allowed is False
        assert results[30].remaining == 0

    @pytest.mark.asyncio
    async def test_window_elapses(
        self, memory_store: MemoryCounterStore, clock
    ) -> None:

        limiter = RateLimiter(memory_store, limit=2, window=60)
        for _ in range(3):
            await limiter.hit("1.2.3.4")

        clock.advance(60)
        result = await limiter.hit("1.2.3.4")

        assert result.allowed is True
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_reset_after_is_whole_seconds(
        self, memory_store: MemoryCounterStore, clock
    ) -> None:
        limiter = RateLimiter(memory_store, limit=5, window=60)
        await limiter.hit("1.2.3.4")
        clock.advance(0.5)

        result = await limiter.hit("1.2.3.4")

        assert result.reset_after == 60  # 59.5 rounded up

    @pytest.mark.asyncio
    async def test_reset_clears_identifier(
        self, memory_store: MemoryCounterStore
    ) -> None:

        limiter = RateLimiter(memory_store, limit=1, window=60)
        await limiter.hit("1.2.3.4")
        await limiter.reset("1.2.3.4")

        assert (await limiter.hit("1.2.3.4")).allowed is True

    def test_policy_and_key(self, memory_store: MemoryCounterStore) -> None:
        limiter = RateLimiter(memory_store)

        assert limiter.policy == "30;w=60"
        assert limiter.key_for("1.2.3.4") == "ratelimit:1.2.3.4"


class TestRateLimiterSharedStore:
    """The fixed window on top of the Redis counter store."""

    @pytest.mark.asyncio
    async def test_boundary(self, lua_redis) -> None:
        limiter = RateLimiter(RedisCounterStore(lua_redis), limit=30, window=60)

        results = [await limiter.hit("1.2.3.4") for _ in range(31)]

        assert all(r.allowed for r in results[:30])
        assert results[29].remaining == 0
        assert results[30].allowed is False
        assert 0 < results[30].reset_after <= 60

        hit = await limiter.store.read(limiter.key_for("1.2.3.4"))
        assert hit is not None
        assert hit.count == 31

    @pytest.mark.asyncio
    async def test_identifiers_are_counted_separately(self, lua_redis) -> None:
        limiter = RateLimiter(RedisCounterStore(lua_redis), limit=1, window=60)

        assert (await limiter.hit("1.2.3.4")).allowed is True
        assert (await limiter.hit("1.2.3.4")).allowed is False
        assert (await limiter.hit("5.6.7.8")).allowed is True

    @pytest.mark.asyncio
    async def test_window_elapses(self, lua_redis) -> None:
        limiter = RateLimiter(RedisCounterStore(lua_redis), limit=2, window=1)
        for _ in range(3):
            await limiter.hit("1.2.3.4")
        assert (await limiter.hit("1.2.3.4")).allowed is False

        await asyncio.sleep(1.1)
        result = await limiter.hit("1.2.3.4")

        assert result.allowed is True
        assert result.remaining == 1
