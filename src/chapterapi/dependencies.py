"""FastAPI dependency injection container.

This module provides dependency injection functions for use with FastAPI's
Depends() pattern. Dependencies are organized by functionality and can be
easily overridden in tests via ``app.dependency_overrides``.
"""

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from chapterapi.config import Settings, get_settings
from chapterapi.core.exceptions import AuthorizationError
from chapterapi.core.logging import get_logger
from chapterapi.repositories.chapter import ChapterRepository
from chapterapi.services.cache import get_cache_client
from chapterapi.services.chapter_cache import ChapterListCache

logger = get_logger(__name__)


# ========================================
# Settings Dependencies
# ========================================
def get_settings_from_request(request: Request) -> Settings:
    """Get settings from app state (set by ``create_app``).

    Falls back to the cached environment settings when the app was built
    without explicit settings.

    Args:
        request: The current request

    Returns:
        Settings: Application settings
    """
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_from_request)]


# ========================================
# Database Dependencies
# ========================================
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Yields a database session that automatically handles
    commit on success and rollback on exception.

    Yields:
        AsyncSession: Database session
    """

    from chapterapi.core.database import get_async_session

    async for session in get_async_session():
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


DbSessionDep = Annotated[AsyncSession, Depends(get_db_session)]


def get_chapter_repository(session: DbSessionDep) -> ChapterRepository:
    """Get a chapter repository bound to the request session."""
    return ChapterRepository(session)


ChapterRepositoryDep = Annotated[ChapterRepository, Depends(get_chapter_repository)]


# ========================================
# Cache Dependencies
# ========================================
def get_chapter_list_cache(request: Request) -> ChapterListCache:
    """Get the cache for the default chapter listing.

    Built once during startup; without startup it wraps an unavailable
    client, which makes every cache operation a no-op.
    """
    chapter_cache = getattr(request.app.state, "chapter_cache", None)
    if chapter_cache is None:
        return ChapterListCache(get_cache_client(request))
    return chapter_cache


ChapterListCacheDep = Annotated[ChapterListCache, Depends(get_chapter_list_cache)]


# ========================================
# Auth Dependencies
# ========================================
def _extract_token(authorization: str) -> str:
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return authorization.strip()


async def require_admin(request: Request, settings: SettingsDep) -> None:
    """Allow the request only if it carries the admin token.

    Accepts ``Authorization: Bearer <token>`` as well as the bare token.
    An empty ADMIN_TOKEN denies every request.

    Raises:
        AuthorizationError: 403 if the token is missing or wrong
    """
    expected = settings.admin_token.get_secret_value()
    provided = _extract_token(request.headers.get("Authorization", ""))

    if not expected or not provided:
        logger.warning(
            "admin_auth_denied", reason="missing_token", path=request.url.path
        )
        raise AuthorizationError()

    if not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning(
            "admin_auth_denied", reason="token_mismatch", path=request.url.path
        )
        raise AuthorizationError()
