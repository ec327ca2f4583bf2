"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.logging import get_logger
from app.services.recording_sessions import get_session_manager

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Stop open sessions so their residual speech is analyzed
    await get_session_manager().close_all()
    logger.info("All recording sessions closed")


app = FastAPI(
    title="Voice Req Engine",
    description="Turns live spoken requirements into a canvas of features and capabilities",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
