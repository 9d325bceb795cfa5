"""Chapter upload ingestion.

An upload is a JSON array of chapter objects. Each record is validated
and inserted on its own, so one bad record never aborts the batch; the
result reports every rejected object together with the reason.
"""

import json
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from chapterapi.core.exceptions import InvalidUploadError
from chapterapi.models.chapter import Chapter
from chapterapi.repositories.chapter import ChapterRepository
from chapterapi.schemas.chapter import ChapterCreate, UploadFailure, UploadResponse

logger = structlog.get_logger(__name__)


def parse_chapter_upload(content: bytes) -> list[Any]:
    """Decode an uploaded file into a list of raw chapter records.

    Raises:
        InvalidUploadError: If the content is not JSON or not an array
    """
    try:
        data = json.loads(content)
    except (UnicodeDecodeError, ValueError) as e:
        logger.warning("upload_invalid_json", error=str(e))
        raise InvalidUploadError("Invalid JSON format") from e

    if not isinstance(data, list):
        raise InvalidUploadError("Uploaded JSON must be an array of chapters")
    return data


def _describe_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


class ChapterUploadService:
    """Insert uploaded chapters one by one and collect failures."""

    def __init__(self, repo: ChapterRepository) -> None:
        self.repo = repo

    async def ingest(self, records: list[Any]) -> UploadResponse:
        inserted = 0
        failed: list[Any] = []
        errors: list[UploadFailure] = []

        for index, record in enumerate(records):
            reason = await self._insert(record)
            if reason is None:
                inserted += 1
            else:
                failed.append(record)
                errors.append(UploadFailure(index=index, reason=reason))

        logger.info(
            "chapters_uploaded",
            received=len(records),
            inserted=inserted,
            failed=len(failed),
        )
        return UploadResponse(
            inserted=inserted,
            failed_count=len(failed),
            failed=failed,
            errors=errors,
        )

    async def _insert(self, record: Any) -> str | None:
        """Insert one record. Returns the failure reason, or None on success."""
        if not isinstance(record, dict):
            return "Chapter must be a JSON object"

        try:
            data = ChapterCreate.model_validate(record)
        except PydanticValidationError as e:
            return _describe_validation_error(e)

        try:
            await self.repo.insert_one(Chapter(**data.to_model_kwargs()))
        except (SQLAlchemyError, OverflowError, ValueError) as e:
            logger.warning(
                "chapter_insert_failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            return "Failed to store chapter"
        return None
