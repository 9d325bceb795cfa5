"""Common Pydantic schemas used across the API.

This module provides shared schemas for:
- Error responses (consistent error format)
- Health checks
- Simple message responses
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Error Schemas
# =============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    Attributes:
        error: Human-readable error description
        code: Machine-readable error code (e.g., "CHAPTER_NOT_FOUND")
        request_id: Correlation ID for tracing (optional)
        details: Additional error context (optional)
    """

    error: str = Field(..., description="Human-readable error description")
    code: str | None = Field(None, description="Machine-readable error code")
    request_id: str | None = Field(
        None, description="Request correlation ID for tracing"
    )
    details: dict[str, Any] | None = Field(
        None, description="Additional error context"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Chapter not found",
                "code": "CHAPTER_NOT_FOUND",
                "request_id": "abc-123-def-456",
            }
        }
    )


# =============================================================================
# Health Check Schemas
# =============================================================================


class HealthCheckResponse(BaseModel):
    """Health check endpoint response.

    Attributes:
        status: Overall health status
        checks: Individual service health checks
    """

    status: str = Field(..., pattern="^(ok|degraded|error)$")
    checks: dict[str, str] = Field(
        default_factory=dict, description="Individual service checks"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "degraded",
                "checks": {
                    "database": "ok",
                    "cache": "unavailable",
                    "rate_limit_store": "memory",
                },
            }
        }
    )


# =============================================================================
# Message Response Schemas
# =============================================================================


class MessageResponse(BaseModel):
    """Simple message response used by the liveness probe."""

    message: str = Field(..., description="Response message")
    service: str | None = None
    version: str | None = None

    model_config = ConfigDict(
        json_schema_extra={"example": {"message": "Chapter API is running!"}}
    )
