"""HTTP middleware: per-client rate limiting and the cached chapter listing.

Both middlewares read collaborators built during startup from
``request.app.state`` and degrade to plain pass-through when those are
missing or unavailable.
"""

from collections.abc import Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from chapterapi.core.exceptions import RateLimitExceededError
from chapterapi.core.logging import get_logger, log_context
from chapterapi.dependencies import get_chapter_list_cache
from chapterapi.schemas.chapter import ChapterListParams
from chapterapi.services.rate_limit import RateLimiter, RateLimitResult

logger = get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

CHAPTER_LIST_PATH = "/api/v1/chapters"


class ChapterCacheMiddleware(BaseHTTPMiddleware):
    """Serve the default chapter listing from the cache when present.

    Only ``GET /api/v1/chapters`` is intercepted. A hit is answered
    directly without calling the route handler. Misses, corrupt entries
    and non-default views fall through to the handler, which is the only
    place the entry is written.
    """

    def __init__(self, app, path: str = CHAPTER_LIST_PATH) -> None:
        super().__init__(app)
        self.path = path.rstrip("/")

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        if request.method != "GET" or request.url.path.rstrip("/") != self.path:
            return await call_next(request)

        chapter_cache = get_chapter_list_cache(request)
        if not chapter_cache.available:
            return await call_next(request)

        try:
            params = ChapterListParams.from_query_params(request.query_params)
        except PydanticValidationError:
            # The handler reports the error
            return await call_next(request)

        if not params.is_default_view:
            response = await call_next(request)
            response.headers["X-Cache"] = "BYPASS"
            return response

        payload = await chapter_cache.lookup()
        if payload is not None:
            logger.debug("chapter_cache_hit", path=request.url.path)
            return JSONResponse(payload, headers={"X-Cache": "HIT"})

        logger.debug("chapter_cache_miss", path=request.url.path)
        response = await call_next(request)
        response.headers["X-Cache"] = "MISS"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window rate limiting by client IP.

    Every response carries the standard ``RateLimit-*`` headers. When the
    counter store fails the request is let through.
    """

    def __init__(self, app, *, trust_forwarded_for: bool = False) -> None:
        super().__init__(app)
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return await call_next(request)

        client_ip = self._client_ip(request)
        try:
            result = await limiter.hit(client_ip)
        except Exception as e:
            logger.warning(
                "rate_limit_check_failed",
                client_ip=client_ip,
                store=limiter.store.kind,
                error=str(e) or type(e).__name__,
            )
            return await call_next(request)

        headers = self._headers(limiter, result)

        if not result.allowed:
            with log_context(client_ip=client_ip):
                logger.warning(
                    "rate_limited",
                    path=request.url.path,
                    limit=result.limit,
                    retry_after=result.reset_after,
                )
            error = RateLimitExceededError()
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(
                    request_id=getattr(request.state, "request_id", None)
                ),
                headers={**headers, "Retry-After": str(result.reset_after)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response

    def _client_ip(self, request: Request) -> str:
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                first_hop = forwarded.split(",")[0].strip()
                if first_hop:
                    return first_hop
        return request.client.host if request.client else "unknown"

    @staticmethod
    def _headers(limiter: RateLimiter, result: RateLimitResult) -> dict[str, str]:
        return {
            "RateLimit-Policy": limiter.policy,
            "RateLimit-Limit": str(result.limit),
            "RateLimit-Remaining": str(result.remaining),
            "RateLimit-Reset": str(result.reset_after),
        }
