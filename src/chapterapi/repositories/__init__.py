"""Repository pattern package for the Chapter API.

This module exports base repository classes and concrete repositories.
"""

from chapterapi.repositories.base import BaseRepository
from chapterapi.repositories.chapter import ChapterFilters, ChapterRepository

__all__ = [
    # Base
    "BaseRepository",
    # Chapters
    "ChapterFilters",
    "ChapterRepository",
]
