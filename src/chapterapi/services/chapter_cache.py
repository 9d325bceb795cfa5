"""Cache-aside storage for the default chapter listing.

Exactly one logical resource is cached: the unfiltered first page of
``GET /api/v1/chapters`` with the default page size, stored as JSON under
the fixed key ``"chapters"``. Filtered or paginated listings are always
computed live and never written, so they cannot pollute the entry.

Any write to the chapters table invalidates the entry wholesale.
"""

import json
from typing import Any

import structlog

from chapterapi.schemas.chapter import ChapterListResponse
from chapterapi.services.cache import CacheClient

logger = structlog.get_logger(__name__)


class ChapterListCache:
    """Read, populate and invalidate the cached default listing."""

    CACHE_KEY = "chapters"
    DEFAULT_TTL = 3600  # 1 hour

    def __init__(self, client: CacheClient, ttl: int = DEFAULT_TTL) -> None:
        self.client = client
        self.ttl = ttl

    @property
    def available(self) -> bool:
        return self.client.available

    async def lookup(self) -> dict[str, Any] | None:
        """Return the cached payload, or None on miss.

        A value that is not a JSON object is treated as a miss.
        """
        raw = await self.client.get(self.CACHE_KEY)
        if raw is None:
            return None

        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(
                "chapter_cache_corrupt", cache_key=self.CACHE_KEY, error=str(e)
            )
            return None

        if not isinstance(payload, dict):
            logger.warning(
                "chapter_cache_corrupt",
                cache_key=self.CACHE_KEY,
                error=f"expected object, got {type(payload).__name__}",
            )
            return None

        return payload

    async def store(self, listing: ChapterListResponse) -> bool:
        """Store the listing exactly as it is rendered to clients."""
        stored = await self.client.set_with_expiry(
            self.CACHE_KEY, self.ttl, listing.to_cache_value()
        )
        if stored:
            logger.debug("chapter_cache_populated", total=listing.total, ttl=self.ttl)
        return stored

    async def invalidate(self) -> bool:
        deleted = await self.client.delete(self.CACHE_KEY)
        if deleted:
            logger.info("chapter_cache_invalidated", cache_key=self.CACHE_KEY)
        return deleted
