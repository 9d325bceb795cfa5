"""ChapterRepository for managing Chapter entities.

This is the document-store interface the API needs: filtered count,
filtered paginated find, lookup by id and independent single inserts.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import ColumnElement, func, select

from chapterapi.models.chapter import Chapter
from chapterapi.repositories.base import BaseRepository


@dataclass(frozen=True)
class ChapterFilters:
    """Exact-match filters for chapter listings. ``None`` means unfiltered."""

    class_: str | None = None
    unit: str | None = None
    status: str | None = None
    subject: str | None = None
    is_weak_chapter: bool | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.class_,
                self.unit,
                self.status,
                self.subject,
                self.is_weak_chapter,
            )
        )

    def conditions(self) -> list[ColumnElement[bool]]:
        """Build SQL WHERE conditions for the set filters."""
        conditions: list[ColumnElement[bool]] = []
        if self.class_ is not None:
            conditions.append(Chapter.class_ == self.class_)
        if self.unit is not None:
            conditions.append(Chapter.unit == self.unit)
        if self.status is not None:
            conditions.append(Chapter.status == self.status)
        if self.subject is not None:
            conditions.append(Chapter.subject == self.subject)
        if self.is_weak_chapter is not None:
            conditions.append(Chapter.is_weak_chapter == self.is_weak_chapter)
        return conditions

    def to_log_dict(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("class", self.class_),
                ("unit", self.unit),
                ("status", self.status),
                ("subject", self.subject),
                ("is_weak_chapter", self.is_weak_chapter),
            )
            if value is not None
        }


class ChapterRepository(BaseRepository[Chapter]):
    """Repository for Chapter entities."""

    async def count(self, filters: ChapterFilters | None = None) -> int:
        """Count chapters matching the filters.

        Args:
            filters: Exact-match filters (None counts every chapter)

        Returns:
            Number of matching chapters
        """
        result = await self.session.execute(
            select(func.count())
            .select_from(Chapter)
            .where(*(filters or ChapterFilters()).conditions())
        )
        return result.scalar_one()

    async def find(
        self,
        filters: ChapterFilters,
        *,
        offset: int = 0,
        limit: int = 10,
    ) -> list[Chapter]:
        """Get one page of chapters matching the filters, oldest first.

        Args:
            filters: Exact-match filters
            offset: Number of records to skip
            limit: Maximum records to return

        Returns:
            List of chapters
        """
        result = await self.session.execute(
            select(Chapter)
            .where(*filters.conditions())
            .order_by(Chapter.created_at, Chapter.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def insert_one(self, chapter: Chapter) -> Chapter:
        """Insert a single chapter inside its own savepoint.

        A failed insert rolls back only its savepoint, so the surrounding
        transaction stays usable for the rest of a batch.

        Args:
            chapter: The chapter to insert

        Returns:
            The persisted chapter with id and timestamps loaded
        """
        async with self.session.begin_nested():
            self.session.add(chapter)
            await self.session.flush()
        await self.session.refresh(chapter)
        return chapter
