"""Models package for the Chapter API.

This module exports the Base class and all model classes.
"""

from chapterapi.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from chapterapi.models.chapter import Chapter

__all__ = [
    # Base and Mixins
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    # Models
    "Chapter",
]
