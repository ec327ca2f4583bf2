"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import canvas, sessions

router = APIRouter()

# Recording sessions and the speech feed
router.include_router(sessions.router, tags=["sessions"])

# Canvas snapshots, live stream and user edits
router.include_router(canvas.router, tags=["canvas"])
