"""Generic base repository with async lookups.

This module provides a generic repository pattern for SQLAlchemy models:
- BaseRepository[T]: Generic class holding the session and model lookups
- All methods are async and use SQLAlchemy 2.0 style

Usage:
    from chapterapi.repositories.base import BaseRepository
    from chapterapi.models.chapter import Chapter

    class ChapterRepository(BaseRepository[Chapter]):
        pass

    repo = ChapterRepository(session)
    chapter = await repo.get_by_id(chapter_id)
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chapterapi.models.base import Base

# Type variable for model classes
T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Generic repository providing async lookups by primary key.

    Type Parameters:
        T: The SQLAlchemy model class

    Attributes:
        session: The async database session
        model_class: The model class for this repository
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository with a database session.

        Args:
            session: Async database session
        """
        self.session = session

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Extract model class from Generic type parameter."""
        super().__init_subclass__(**kwargs)
        for base in cls.__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__"):
                cls.model_class = base.__args__[0]
                break

    async def get_by_id(self, id: UUID) -> T | None:
        """Get a single entity by its UUID.

        Args:
            id: The entity's UUID

        Returns:
            The entity if found, None otherwise
        """
        result = await self.session.execute(
            select(self.model_class).where(self.model_class.id == id)
        )
        return result.scalar_one_or_none()
