"""Services package for the Chapter API.

This module exports service classes for business logic.
"""

from chapterapi.services.cache import CacheClient, CacheState, get_cache_client
from chapterapi.services.chapter_cache import ChapterListCache
from chapterapi.services.chapters import ChapterUploadService, parse_chapter_upload
from chapterapi.services.rate_limit import (
    CounterStore,
    MemoryCounterStore,
    RateLimiter,
    RateLimitResult,
    RedisCounterStore,
    WindowHit,
    select_counter_store,
)

__all__ = [
    # Cache
    "CacheClient",
    "CacheState",
    "ChapterListCache",
    "get_cache_client",
    # Chapters
    "ChapterUploadService",
    "parse_chapter_upload",
    # Rate limiting
    "CounterStore",
    "MemoryCounterStore",
    "RateLimiter",
    "RateLimitResult",
    "RedisCounterStore",
    "WindowHit",
    "select_counter_store",
]
