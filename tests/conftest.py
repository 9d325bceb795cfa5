"""Pytest configuration and fixtures for Chapter API tests.

This module provides reusable fixtures for:
- Test settings (in-memory SQLite, admin token)
- A controllable clock and an in-memory Redis stand-in driven by it
- Async test clients with and without a cache backend
- Upload helpers
"""

import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import fakeredis
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ResponseError

from chapterapi.config import Settings
from chapterapi.main import close_resources, create_app, init_resources

ADMIN_TOKEN = "test-admin-token"


# =============================================================================
# Test Doubles
# =============================================================================


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory subset of ``redis.asyncio.Redis`` with clock-driven TTLs.

    Supports the commands the cache client uses. Scripting is rejected the
    way a server without Lua support would, so the rate limiter falls back
    to its in-process store.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self.closed = False

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def set(self, key: str, value: Any) -> bool:
        self._data[key] = (str(value), None)
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        self._data[key] = (str(value), self._clock() + ttl)
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(key) is not None:
                deleted += 1
            self._data.pop(key, None)
        return deleted

    async def ttl(self, key: str) -> int:
        if self._live(key) is None:
            return -2
        expires_at = self._data[key][1]
        if expires_at is None:
            return -1
        return int(expires_at - self._clock())

    async def script_load(self, script: str) -> str:
        raise ResponseError("ERR unknown command 'SCRIPT'")

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test-specific settings.

    Overrides production settings with test-appropriate values.
    """
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=False,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",  # replaced by FakeRedis
        admin_token=ADMIN_TOKEN,  # type: ignore[arg-type]
        rate_limit_requests=30,
        rate_limit_window=60,
        chapters_cache_ttl=3600,
    )


@pytest.fixture
def no_cache_settings(test_settings: Settings) -> Settings:
    """Settings with no Redis configured."""
    return test_settings.model_copy(update={"redis_url": None})


# =============================================================================
# Cache Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
async def lua_redis() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """Isolated fake Redis server that runs Lua scripts."""
    redis = fakeredis.FakeAsyncRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )
    yield redis
    await redis.aclose()


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings) -> FastAPI:
    """Create a test FastAPI application with test settings."""
    return create_app(settings=test_settings)


@pytest.fixture
async def initialized_app(
    app: FastAPI,
    test_settings: Settings,
    fake_redis: FakeRedis,
    clock: FakeClock,
) -> AsyncGenerator[FastAPI, None]:
    """App with database, fake cache and rate limiter initialized.

    ASGITransport does not run the lifespan, so resources are set up here.
    """
    await init_resources(app, test_settings, redis=fake_redis, clock=clock)
    yield app
    await close_resources(app)


@pytest.fixture
async def async_client(initialized_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    This client makes requests to the test app without starting a server.

    Usage:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health/live")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=initialized_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
async def no_cache_client(
    no_cache_settings: Settings, clock: FakeClock
) -> AsyncGenerator[AsyncClient, None]:
    """Client for an app running without any cache backend."""
    app = create_app(settings=no_cache_settings)
    await init_resources(app, no_cache_settings, clock=clock)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    await close_resources(app)


# =============================================================================
# Upload Helpers
# =============================================================================


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


def _chapter_file(payload: Any) -> dict[str, tuple[str, bytes, str]]:
    """Build the multipart ``files`` argument for an upload request."""
    content = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return {"file": ("chapters.json", content, "application/json")}


def _make_chapter(**overrides: Any) -> dict[str, Any]:
    """A valid uploaded chapter in wire format."""
    chapter: dict[str, Any] = {
        "subject": "Physics",
        "chapter": "Mathematics in Physics",
        "class": "Class 11",
        "unit": "Mechanics 1",
        "status": "Completed",
        "isWeakChapter": False,
        "questionSolved": 205,
        "yearWiseQuestionCount": {"2019": 0, "2020": 2, "2021": 5},
    }
    chapter.update(overrides)
    return chapter


@pytest.fixture
def chapter_file() -> Callable[[Any], dict[str, tuple[str, bytes, str]]]:
    return _chapter_file


@pytest.fixture
def make_chapter() -> Callable[..., dict[str, Any]]:
    return _make_chapter


@pytest.fixture
def sample_chapters() -> list[dict[str, Any]]:
    return [
        _make_chapter(),
        _make_chapter(
            subject="Chemistry",
            chapter="Some Basic Concepts of Chemistry",
            unit="Physical Chemistry",
            status="Not Started",
            isWeakChapter=True,
            questionSolved=0,
        ),
        _make_chapter(
            subject="Mathematics",
            chapter="Sets",
            **{"class": "Class 12"},
            unit="Algebra",
            status="In Progress",
            isWeakChapter=True,
            questionSolved=12,
        ),
    ]
