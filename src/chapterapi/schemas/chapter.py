"""Schemas for chapter endpoints.

The wire format uses the camelCase field names clients already know
(``isWeakChapter``, ``questionSolved``, ...) while Python code uses
snake_case attributes. Inputs accept either spelling.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)

from chapterapi.repositories.chapter import ChapterFilters

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# Counts are stored in 32-bit integer columns
MAX_COUNT = 2**31 - 1

QuestionCount = Annotated[int, Field(ge=0, le=MAX_COUNT)]


def _alias(wire_name: str, attr_name: str) -> dict[str, Any]:
    return {
        "validation_alias": AliasChoices(wire_name, attr_name),
        "serialization_alias": wire_name,
    }


# =============================================================================
# Chapter Records
# =============================================================================


class ChapterBase(BaseModel):
    """Business fields shared by chapter inputs and outputs."""

    subject: str | None = None
    chapter: str | None = None
    class_: str | None = Field(default=None, **_alias("class", "class_"))
    unit: str | None = None
    status: str | None = None
    is_weak_chapter: bool | None = Field(
        default=None, **_alias("isWeakChapter", "is_weak_chapter")
    )
    question_solved: int | None = Field(
        default=None,
        ge=0,
        le=MAX_COUNT,
        **_alias("questionSolved", "question_solved"),
    )
    year_wise_question_count: dict[str, QuestionCount] | None = Field(
        default=None, **_alias("yearWiseQuestionCount", "year_wise_question_count")
    )


class ChapterCreate(ChapterBase):
    """A single chapter from an uploaded JSON array.

    Numbers given for text fields are stored as text; unknown keys are
    ignored.
    """

    model_config = ConfigDict(
        extra="ignore",
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )

    def to_model_kwargs(self) -> dict[str, Any]:
        return self.model_dump(by_alias=False)


class ChapterResponse(ChapterBase):
    """A persisted chapter as returned by the API."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "0192f8a4-3c1e-7d2a-9b7e-5f1a2c3d4e5f",
                "subject": "Physics",
                "chapter": "Mathematics in Physics",
                "class": "Class 11",
                "unit": "Mechanics 1",
                "status": "Completed",
                "isWeakChapter": False,
                "questionSolved": 205,
                "yearWiseQuestionCount": {"2019": 0, "2020": 2, "2021": 5},
                "createdAt": "2024-12-11T12:00:00Z",
                "updatedAt": "2024-12-11T12:00:00Z",
            }
        },
    )

    id: UUID
    created_at: datetime = Field(**_alias("createdAt", "created_at"))
    updated_at: datetime = Field(**_alias("updatedAt", "updated_at"))


class ChapterListResponse(BaseModel):
    """One page of chapters plus the total number of matches."""

    total: int = Field(..., ge=0, description="Total chapters matching the filters")
    chapters: list[ChapterResponse] = Field(..., description="Chapters on this page")

    def to_cache_value(self) -> str:
        """Serialize exactly as the endpoint renders the payload."""
        return self.model_dump_json(by_alias=True)


# =============================================================================
# Listing Parameters
# =============================================================================


class ChapterListParams(BaseModel):
    """Filters and pagination for ``GET /api/v1/chapters``."""

    model_config = ConfigDict(extra="ignore")

    class_: str | None = Field(default=None, alias="class")
    unit: str | None = None
    status: str | None = None
    subject: str | None = None
    is_weak_chapter: bool | None = Field(default=None, alias="isWeakChapter")
    page: int = Field(default=DEFAULT_PAGE, ge=1)
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)

    @field_validator("*", mode="before")
    @classmethod
    def blank_means_unset(cls, v: Any, info: ValidationInfo) -> Any:
        """Empty query values (``?status=``) are ignored like missing ones."""
        if isinstance(v, str) and not v.strip():
            return cls.model_fields[info.field_name].default
        return v

    @classmethod
    def from_query_params(cls, query_params: Mapping[str, str]) -> ChapterListParams:
        """Parse raw query parameters (last value wins for repeated keys).

        Raises:
            pydantic.ValidationError: If a value cannot be parsed
        """
        return cls.model_validate(dict(query_params))

    @property
    def filters(self) -> ChapterFilters:
        return ChapterFilters(
            class_=self.class_,
            unit=self.unit,
            status=self.status,
            subject=self.subject,
            is_weak_chapter=self.is_weak_chapter,
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def is_default_view(self) -> bool:
        """True for the unfiltered first page, the only view that is cached."""
        return (
            self.filters.is_empty
            and self.page == DEFAULT_PAGE
            and self.limit == DEFAULT_LIMIT
        )


# =============================================================================
# Upload
# =============================================================================


class UploadFailure(BaseModel):
    """Why one uploaded record was not inserted."""

    index: int = Field(..., ge=0, description="Position in the uploaded array")
    reason: str = Field(..., description="Validation or storage error")


class UploadResponse(BaseModel):
    """Outcome of a chapter upload. Records are inserted independently."""

    message: str = Field(default="Upload complete")
    inserted: int = Field(..., ge=0)
    failed_count: int = Field(..., ge=0, serialization_alias="failedCount")
    failed: list[Any] = Field(
        default_factory=list, description="The uploaded objects that failed"
    )
    errors: list[UploadFailure] = Field(
        default_factory=list, description="Failure reason per rejected record"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "Upload complete",
                "inserted": 2,
                "failedCount": 1,
                "failed": [{"subject": "Physics", "questionSolved": "many"}],
                "errors": [
                    {
                        "index": 2,
                        "reason": "questionSolved: Input should be a valid integer",
                    }
                ],
            }
        }
    )
