"""SQLAlchemy Base model and common mixins.

This module provides:
- Base: Declarative base for all models
- UUIDPrimaryKeyMixin: UUID primary key for all entities
- TimestampMixin: created_at and updated_at columns

Usage:
    from chapterapi.models.base import Base, UUIDPrimaryKeyMixin, TimestampMixin

    class MyModel(UUIDPrimaryKeyMixin, TimestampMixin, Base):
        __tablename__ = "my_table"
        name: Mapped[str]
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column.

    Identifiers are assigned by the application on insert, so a record's
    ``id`` is known before the row is flushed.
    """

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns.

    - created_at: Set automatically on insert (microsecond precision, so
      listings ordered by it follow insertion order)
    - updated_at: Set automatically on insert and update
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            default=_utcnow,
            server_default=func.now(),
            nullable=False,
            index=True,
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            default=_utcnow,
            server_default=func.now(),
            onupdate=_utcnow,
            nullable=False,
        )
