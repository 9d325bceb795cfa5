"""Custom exception hierarchy for the Chapter API.

This module defines a consistent exception hierarchy that enables:
- Structured error responses with error codes
- Consistent HTTP status code mapping
- Machine-readable error handling for API consumers

Usage:
    from chapterapi.core.exceptions import ChapterNotFoundError

    raise ChapterNotFoundError(chapter_id="0192f8a4-...")
"""

from typing import Any


class ChapterAPIError(Exception):
    """Base exception for all Chapter API errors.

    Attributes:
        code: Machine-readable error code (e.g., "CHAPTER_NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        The ``error`` field is always the human-readable message so that
        clients can rely on ``{"error": "<string>"}``.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        body: dict[str, Any] = {
            "error": self.message,
            "code": self.code,
        }
        if request_id:
            body["request_id"] = request_id
        if self.details:
            body["details"] = self.details
        return body


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(ChapterAPIError):
    """Base class for resource not found errors."""

    status_code: int = 404


class ChapterNotFoundError(NotFoundError):
    """Raised when a chapter cannot be found."""

    code: str = "CHAPTER_NOT_FOUND"
    message: str = "Chapter not found"

    def __init__(
        self, chapter_id: str | None = None, message: str | None = None
    ) -> None:
        details: dict[str, Any] = {}
        if chapter_id:
            details["chapter_id"] = chapter_id
        super().__init__(message=message, details=details if details else None)


# =============================================================================
# Authorization Errors (403)
# =============================================================================


class AuthorizationError(ChapterAPIError):
    """Raised when the caller does not present the admin token."""

    code: str = "UNAUTHORIZED"
    message: str = "Unauthorized"
    status_code: int = 403


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ChapterAPIError):
    """Raised when input validation fails."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class InvalidChapterIdError(ValidationError):
    """Raised when a chapter ID is not a valid UUID."""

    code: str = "INVALID_CHAPTER_ID"
    message: str = "Invalid chapter ID"

    def __init__(self, chapter_id: str | None = None) -> None:
        details: dict[str, Any] = {}
        if chapter_id:
            details["chapter_id"] = chapter_id
        super().__init__(field="id", details=details)


class InvalidUploadError(ValidationError):
    """Raised when an uploaded chapter file cannot be used."""

    code: str = "INVALID_UPLOAD"
    message: str = "Invalid upload"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message=message, field="file")


# =============================================================================
# Rate Limiting (429)
# =============================================================================


class RateLimitExceededError(ChapterAPIError):
    """Raised when a client exceeds the request limit for its window."""

    code: str = "RATE_LIMITED"
    message: str = "Too many requests, please try again later."
    status_code: int = 429


# =============================================================================
# Storage Errors (500)
# =============================================================================


class DatabaseError(ChapterAPIError):
    """Raised when a document store query fails while serving a request."""

    code: str = "DATABASE_ERROR"
    message: str = "Failed to access chapter storage"
    status_code: int = 500


class DatabaseUnavailableError(DatabaseError):
    """Raised at startup when the document store cannot be reached."""

    code: str = "DATABASE_UNAVAILABLE"
    message: str = "Database is not reachable"
    status_code: int = 503


# =============================================================================
# Cache Errors (never surfaced to clients)
# =============================================================================


class CacheError(ChapterAPIError):
    """Base class for cache backend failures.

    Consumers catch these and degrade to cache-less behaviour.
    """

    code: str = "CACHE_ERROR"
    message: str = "Cache backend error"
    status_code: int = 503


class CounterStoreUnavailableError(CacheError):
    """Raised when the shared rate-limit counter store cannot be prepared."""

    code: str = "COUNTER_STORE_UNAVAILABLE"
    message: str = "Shared counter store is unavailable"


class UnsupportedCounterCommandError(CacheError):
    """Raised when the counter store is asked for a command it cannot translate."""

    code: str = "UNSUPPORTED_COUNTER_COMMAND"
    message: str = "Counter store command is not supported"

    def __init__(self, command: str) -> None:
        super().__init__(
            message=f"Command '{command}' is not supported by the shared counter store",
            details={"command": command},
        )
        self.command = command
