"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from chapterapi.api.v1.chapters import router as chapters_router

router = APIRouter()

# Include sub-routers
router.include_router(chapters_router, prefix="/chapters", tags=["Chapters"])
