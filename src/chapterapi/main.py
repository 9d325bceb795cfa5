"""FastAPI application factory for the Chapter API.

This module creates and configures the FastAPI application with:
- Lifespan management for startup/shutdown events
- Middleware configuration (request logging, CORS, rate limiting, listing cache)
- Exception handlers
- API routers
"""

import time
import uuid
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from starlette.exceptions import HTTPException as StarletteHTTPException

from chapterapi.api.middleware import ChapterCacheMiddleware, RateLimitMiddleware
from chapterapi.config import Settings, get_settings
from chapterapi.core.exceptions import ChapterAPIError
from chapterapi.core.logging import (
    bind_request_id,
    bind_runtime_context,
    clear_request_context,
    configure_logging,
    get_logger,
)
from chapterapi.dependencies import get_settings_from_request
from chapterapi.schemas.common import HealthCheckResponse, MessageResponse
from chapterapi.services.cache import CacheClient, CacheState
from chapterapi.services.chapter_cache import ChapterListCache
from chapterapi.services.rate_limit import RateLimiter, select_counter_store

# Initialize logger for this module
logger = get_logger(__name__)


async def init_resources(
    app: FastAPI,
    settings: Settings,
    *,
    redis: Redis | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Build every shared collaborator before the app serves traffic.

    The database must be reachable; the cache is optional and its state is
    fully resolved here, so requests never see a half-initialized client.

    Args:
        app: The FastAPI application instance
        settings: Application settings
        redis: Pre-built Redis client (tests); built from REDIS_URL otherwise
        clock: Monotonic clock for the in-process rate limit store

    Raises:
        DatabaseUnavailableError: If the database cannot be reached
    """
    from chapterapi.core.database import init_db

    await init_db(settings)

    if redis is not None:
        cache = CacheClient(redis, timeout=settings.cache_timeout_seconds)
    else:
        cache = CacheClient.from_settings(settings)
    await cache.connect()

    app.state.cache = cache
    app.state.chapter_cache = ChapterListCache(cache, ttl=settings.chapters_cache_ttl)

    if settings.rate_limit_enabled:
        store = await select_counter_store(cache, clock=clock)
        app.state.rate_limiter = RateLimiter(
            store,
            limit=settings.rate_limit_requests,
            window=settings.rate_limit_window,
        )
    else:
        app.state.rate_limiter = None

    bind_runtime_context(
        cache_state=cache.state.value,
        rate_limit_store=(
            app.state.rate_limiter.store.kind if app.state.rate_limiter else "disabled"
        ),
    )


async def close_resources(app: FastAPI) -> None:
    """Release the cache and database connections."""
    from chapterapi.core.database import close_db

    cache: CacheClient | None = getattr(app.state, "cache", None)
    if cache is not None:
        await cache.close()
    app.state.rate_limiter = None

    await close_db()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan events.

    Handles initialization and cleanup of:
    - Logging configuration
    - Database connection pool
    - Redis cache client and rate limit counter store

    Args:
        app: The FastAPI application instance

    Yields:
        None: Control back to the application
    """
    settings: Settings = app.state.settings

    # ========================================
    # Startup
    # ========================================
    # Configure logging first
    configure_logging(settings)

    # Re-get logger after configuration
    startup_logger = get_logger(__name__)

    await init_resources(app, settings)

    startup_logger.info(
        "Application starting",
        debug=settings.debug,
        redis_url=settings.redis_url,
    )

    yield

    # ========================================
    # Shutdown
    # ========================================
    await close_resources(app)

    startup_logger.info("Application shutting down", app_name=settings.app_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    This is the application factory function that creates a fully configured
    FastAPI instance with all middleware, routes, and exception handlers.

    Args:
        settings: Optional settings override for testing

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Chapter records with filtered listing, admin JSON upload, "
            "a cached default listing and per-client rate limiting."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Store settings in app state for access in dependencies
    app.state.settings = settings

    # ========================================
    # Middleware
    # ========================================
    configure_middleware(app, settings)

    # ========================================
    # Exception Handlers
    # ========================================
    configure_exception_handlers(app)

    # ========================================
    # Routes
    # ========================================
    configure_routes(app)

    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure application middleware.

    Middleware added last runs first, so a request passes through
    logging, CORS, rate limiting and then the listing cache.

    Args:
        app: The FastAPI application instance
        settings: Application settings
    """
    app.add_middleware(ChapterCacheMiddleware)

    app.add_middleware(
        RateLimitMiddleware,
        trust_forwarded_for=settings.trust_forwarded_for,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Cache",
            "RateLimit-Policy",
            "RateLimit-Limit",
            "RateLimit-Remaining",
            "RateLimit-Reset",
            "Retry-After",
        ],
    )

    # Request logging middleware
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Any) -> Any:
        """Log requests and responses with their request ID."""
        # Generate or extract request ID
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        bind_request_id(request_id)

        request_logger = get_logger("chapterapi.request")
        start_time = time.perf_counter()

        request_logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params) if request.query_params else None,
        )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000

            request_logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                cache=response.headers.get("X-Cache"),
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id

            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
            )
            raise

        finally:
            clear_request_context()


def configure_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers.

    Every error body has the shape ``{"error": "<message>", "code": ...}``.

    Args:
        app: The FastAPI application instance
    """
    exception_logger = get_logger("chapterapi.exceptions")

    @app.exception_handler(ChapterAPIError)
    async def chapter_api_exception_handler(
        request: Request, exc: ChapterAPIError
    ) -> JSONResponse:
        """Handle Chapter API exceptions with structured error response."""
        request_id = getattr(request.state, "request_id", None)

        # Log at appropriate level based on status code
        if exc.status_code >= 500:
            exception_logger.error(
                "Application error",
                error_code=exc.code,
                error_message=exc.message,
                status_code=exc.status_code,
                path=request.url.path,
            )
        else:
            exception_logger.warning(
                "Client error",
                error_code=exc.code,
                error_message=exc.message,
                status_code=exc.status_code,
                path=request.url.path,
            )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=request_id),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed query, path or form input as 400."""
        request_id = getattr(request.state, "request_id", None)

        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        exception_logger.warning(
            "Client error",
            error_code="VALIDATION_ERROR",
            path=request.url.path,
            errors=errors,
        )

        content: dict[str, Any] = {
            "error": "Invalid request parameters",
            "code": "VALIDATION_ERROR",
            "details": {"errors": errors},
        }
        if request_id:
            content["request_id"] = request_id
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Render framework errors (unknown route, wrong method) uniformly."""
        content: dict[str, Any] = {
            "error": str(exc.detail),
            "code": f"HTTP_{exc.status_code}",
        }
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            content["request_id"] = request_id
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions with a consistent error response."""
        request_id = getattr(request.state, "request_id", None)

        exception_logger.exception(
            "Unhandled exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
        )

        content: dict[str, Any] = {
            "error": "Internal server error",
            "code": "INTERNAL_SERVER_ERROR",
        }
        if request_id:
            content["request_id"] = request_id
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=content,
            headers={"X-Request-ID": request_id} if request_id else None,
        )


def configure_routes(app: FastAPI) -> None:
    """Configure application routes.

    Args:
        app: The FastAPI application instance
    """

    @app.get(
        "/health/live",
        tags=["Health"],
        summary="Liveness probe",
        description="Returns OK if the service is running",
    )
    async def liveness() -> dict[str, str]:
        """Liveness probe for container orchestration."""
        return {"status": "ok"}

    @app.get(
        "/health/ready",
        response_model=HealthCheckResponse,
        tags=["Health"],
        summary="Readiness probe",
        description="Reports database, cache and rate limit store state",
    )
    async def readiness(request: Request) -> HealthCheckResponse:
        """Readiness probe checking dependent services.

        A missing cache only degrades the service; a missing database
        is an error.
        """
        from chapterapi.core.database import check_db_connection

        db_ok = await check_db_connection()

        settings = get_settings_from_request(request)
        cache: CacheClient | None = getattr(request.app.state, "cache", None)
        cache_state = cache.state if cache is not None else CacheState.UNAVAILABLE
        if not settings.cache_enabled:
            cache_check = "disabled"
        else:
            cache_check = "ok" if cache_state == CacheState.READY else cache_state.value

        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)

        if not db_ok:
            overall_status = "error"
        elif cache_check not in ("ok", "disabled"):
            overall_status = "degraded"
        else:
            overall_status = "ok"

        return HealthCheckResponse(
            status=overall_status,
            checks={
                "database": "ok" if db_ok else "error",
                "cache": cache_check,
                "rate_limit_store": limiter.store.kind if limiter else "disabled",
            },
        )

    # Root endpoint
    @app.get(
        "/",
        response_model=MessageResponse,
        response_model_exclude_none=True,
        tags=["Root"],
        summary="API root",
        description="Returns a liveness message and service information",
    )
    async def root(request: Request) -> MessageResponse:
        """API root endpoint with service information."""
        settings = get_settings_from_request(request)
        return MessageResponse(
            message="Chapter API is running!",
            service=settings.app_name,
            version=settings.app_version,
        )

    # Include API v1 router
    from chapterapi.api.v1.router import router as v1_router

    app.include_router(v1_router, prefix="/api/v1")


# Create the application instance
app = create_app()


def cli() -> None:
    """CLI entry point for running the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chapterapi.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
