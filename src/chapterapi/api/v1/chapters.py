"""Chapter endpoints: cached listing, lookup by id and admin upload."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from chapterapi.core.exceptions import (
    ChapterNotFoundError,
    DatabaseError,
    InvalidChapterIdError,
    InvalidUploadError,
    ValidationError,
)
from chapterapi.core.logging import get_logger
from chapterapi.dependencies import (
    ChapterListCacheDep,
    ChapterRepositoryDep,
    DbSessionDep,
    require_admin,
)
from chapterapi.repositories.chapter import ChapterRepository
from chapterapi.schemas.chapter import (
    ChapterListParams,
    ChapterListResponse,
    ChapterResponse,
    UploadResponse,
)
from chapterapi.schemas.common import ErrorResponse
from chapterapi.services.chapters import ChapterUploadService, parse_chapter_upload

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================


def get_list_params(
    class_: Annotated[
        str | None, Query(alias="class", description="Exact class, e.g. 'Class 11'")
    ] = None,
    unit: Annotated[str | None, Query(description="Exact unit")] = None,
    status_: Annotated[
        str | None, Query(alias="status", description="Exact status")
    ] = None,
    subject: Annotated[str | None, Query(description="Exact subject")] = None,
    is_weak_chapter: Annotated[
        str | None, Query(alias="isWeakChapter", description="true or false")
    ] = None,
    page: Annotated[str | None, Query(description="Page number, from 1")] = None,
    limit: Annotated[str | None, Query(description="Page size, 1-100")] = None,
) -> ChapterListParams:
    """Parse listing parameters with the same model the cache middleware uses."""
    raw: dict[str, Any] = {
        "class": class_,
        "unit": unit,
        "status": status_,
        "subject": subject,
        "isWeakChapter": is_weak_chapter,
        "page": page,
        "limit": limit,
    }
    try:
        return ChapterListParams.model_validate(
            {key: value for key, value in raw.items() if value is not None}
        )
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid request parameters",
            details={
                "errors": [
                    {
                        "field": ".".join(str(p) for p in err["loc"]),
                        "message": err["msg"],
                    }
                    for err in e.errors()
                ]
            },
        ) from e


ListParamsDep = Annotated[ChapterListParams, Depends(get_list_params)]


# =============================================================================
# Listing
# =============================================================================


@router.get(
    "",
    response_model=ChapterListResponse,
    status_code=status.HTTP_200_OK,
    summary="List chapters",
    description=(
        "List chapters with optional exact-match filters and pagination. "
        "The unfiltered first page is served from the cache when available."
    ),
    responses={
        200: {"description": "One page of chapters"},
        400: {"model": ErrorResponse, "description": "Invalid query parameters"},
        500: {"model": ErrorResponse, "description": "Storage error"},
    },
)
async def list_chapters(
    params: ListParamsDep,
    repo: ChapterRepositoryDep,
    chapter_cache: ChapterListCacheDep,
) -> ChapterListResponse:
    """List chapters and populate the cache for the default view."""
    filters = params.filters
    logger.info(
        "list_chapters_request",
        filters=filters.to_log_dict(),
        page=params.page,
        limit=params.limit,
    )

    try:
        total = await repo.count(filters)
        chapters = await repo.find(filters, offset=params.offset, limit=params.limit)
    except SQLAlchemyError as e:
        logger.error("list_chapters_failed", error=str(e))
        raise DatabaseError() from e

    listing = ChapterListResponse(
        total=total,
        chapters=[ChapterResponse.model_validate(chapter) for chapter in chapters],
    )

    if params.is_default_view:
        await chapter_cache.store(listing)

    return listing


# =============================================================================
# Lookup
# =============================================================================


@router.get(
    "/{chapter_id}",
    response_model=ChapterResponse,
    summary="Get a chapter",
    responses={
        400: {"model": ErrorResponse, "description": "Malformed chapter id"},
        404: {"model": ErrorResponse, "description": "Chapter not found"},
    },
)
async def get_chapter(chapter_id: str, repo: ChapterRepositoryDep) -> ChapterResponse:
    try:
        uuid = UUID(chapter_id)
    except ValueError as e:
        raise InvalidChapterIdError(chapter_id) from e

    try:
        chapter = await repo.get_by_id(uuid)
    except SQLAlchemyError as e:
        logger.error("get_chapter_failed", chapter_id=chapter_id, error=str(e))
        raise DatabaseError() from e

    if chapter is None:
        raise ChapterNotFoundError(chapter_id=chapter_id)

    return ChapterResponse.model_validate(chapter)


# =============================================================================
# Upload
# =============================================================================


@router.post(
    "",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload chapters",
    description=(
        "Upload a JSON file containing an array of chapters. Each chapter is "
        "inserted independently; rejected ones are reported with a reason."
    ),
    dependencies=[Depends(require_admin)],
    responses={
        400: {"model": ErrorResponse, "description": "Missing or malformed file"},
        403: {"model": ErrorResponse, "description": "Missing or wrong admin token"},
    },
)
async def upload_chapters(
    session: DbSessionDep,
    chapter_cache: ChapterListCacheDep,
    file: Annotated[
        UploadFile | None, File(description="JSON array of chapters")
    ] = None,
) -> UploadResponse:
    """Insert uploaded chapters and invalidate the cached listing."""
    if file is None:
        raise InvalidUploadError("No file uploaded")

    content = await file.read()
    records = parse_chapter_upload(content)
    logger.info("upload_chapters_request", filename=file.filename, records=len(records))

    service = ChapterUploadService(ChapterRepository(session))
    result = await service.ingest(records)

    try:
        await session.commit()
    except SQLAlchemyError as e:
        logger.error("upload_commit_failed", error=str(e))
        raise DatabaseError() from e

    # Drop the cached listing only after the new rows are visible
    await chapter_cache.invalidate()

    return result
