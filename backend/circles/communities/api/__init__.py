"""FastAPI routers for the communities domain."""

from __future__ import annotations

from fastapi import APIRouter

from circles.communities.api import groups, posts

router = APIRouter(prefix="/api/v1")

router.include_router(groups.router)
router.include_router(posts.router)
