"""Chapter model - a syllabus chapter with the learner's progress metadata."""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from chapterapi.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Chapter(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A chapter record.

    All business fields are optional, mirroring a schemaless document
    store: uploads may omit any of them.

    Attributes:
        subject: Subject name (e.g., "Physics")
        chapter: Chapter title
        class_: Class/grade label (column ``class``)
        unit: Unit label within the subject
        status: Progress status (e.g., "Completed", "Not Started")
        is_weak_chapter: Whether the learner marked the chapter as weak
        question_solved: Number of questions solved so far
        year_wise_question_count: Mapping of year label to question count
    """

    __tablename__ = "chapters"

    subject: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    chapter: Mapped[str | None] = mapped_column(String(500), nullable=True)
    class_: Mapped[str | None] = mapped_column(
        "class", String(50), nullable=True, index=True
    )
    unit: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    is_weak_chapter: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    question_solved: Mapped[int | None] = mapped_column(Integer, nullable=True)
    year_wise_question_count: Mapped[dict[str, int] | None] = mapped_column(
        JSON, nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Chapter(id={self.id}, subject='{self.subject}', "
            f"chapter='{self.chapter}', class='{self.class_}')>"
        )
