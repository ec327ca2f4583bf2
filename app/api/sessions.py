"""API endpoints for recording sessions and the transcript feed."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field

from app.core.feature_store import StoreError
from app.core.logging import get_logger
from app.core.schemas_analysis import AnalysisOutcome
from app.services.recording_sessions import (
    RecordingSession,
    SessionManager,
    SessionNotFoundError,
    get_session_manager,
)

logger = get_logger(__name__)

router = APIRouter()


class SpeechEventRequest(BaseModel):
    """One event from the speech-to-text engine."""

    text: str = Field(..., description="Recognized text")
    is_final: bool = Field(default=True, description="False for interim (live caption) results")


class SpeechEventResponse(BaseModel):
    buffered: bool
    pending_segments: int


class SessionStatusResponse(BaseModel):
    session_id: str
    recording: bool
    analysis_in_flight: bool
    pending_segments: int
    pending_text: str
    interim_text: str
    canvas_version: int


class FlushResponse(BaseModel):
    """Result of an explicit flush request."""

    status: Literal["analyzed", "busy", "empty"]
    outcome: AnalysisOutcome | None = None


class StopResponse(BaseModel):
    session_id: str
    final_transcript: str
    pending_segments: int = Field(..., description="Speech left buffered because the last pass failed")


def get_session_or_404(
    session_id: str = Path(..., description="Recording session id"),
    manager: SessionManager = Depends(get_session_manager),
) -> RecordingSession:
    try:
        return manager.get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


def _status(session: RecordingSession) -> SessionStatusResponse:
    return SessionStatusResponse.model_validate(session.status())


@router.post("/sessions", response_model=SessionStatusResponse, status_code=201)
async def create_session(
    manager: SessionManager = Depends(get_session_manager),
) -> SessionStatusResponse:
    """Create a recording session and start its analysis triggers."""
    session = manager.create(start=True)
    logger.info(f"Created recording session {session.id}", extra={"session_id": session.id})
    return _status(session)


@router.get("/sessions", response_model=list[SessionStatusResponse])
async def list_sessions(
    manager: SessionManager = Depends(get_session_manager),
) -> list[SessionStatusResponse]:
    return [_status(s) for s in manager.list_sessions()]


@router.get("/sessions/{session_id}", response_model=SessionStatusResponse)
async def get_session_status(
    session: RecordingSession = Depends(get_session_or_404),
) -> SessionStatusResponse:
    return _status(session)


@router.post("/sessions/{session_id}/speech", response_model=SpeechEventResponse)
async def post_speech_event(
    request: SpeechEventRequest,
    session: RecordingSession = Depends(get_session_or_404),
) -> SpeechEventResponse:
    """
    Feed one speech-engine event into the session.

    Only final, non-blank events reach the analysis buffer.
    """
    segment = session.handle_speech(request.text, request.is_final)
    return SpeechEventResponse(
        buffered=segment is not None,
        pending_segments=len(session.buffer.pending_segments),
    )


@router.post("/sessions/{session_id}/flush", response_model=FlushResponse)
async def flush_session(
    session: RecordingSession = Depends(get_session_or_404),
) -> FlushResponse:
    """
    Analyze the buffered speech now.

    Returns `busy` when a pass is already running and `empty` when
    nothing is buffered; neither is an error.

    Raises:
        HTTPException 500: If the pass failed (speech stays buffered)
    """
    if session.buffer.in_flight:
        return FlushResponse(status="busy")
    if not session.buffer.has_pending:
        return FlushResponse(status="empty")

    try:
        outcome = await session.flush()
    except StoreError as e:
        logger.exception(f"Analysis pass failed: {e}", extra={"session_id": session.id})
        raise HTTPException(
            status_code=500, detail="Analysis pass failed; speech kept for retry"
        ) from e

    if outcome is None:
        return FlushResponse(status="busy")
    return FlushResponse(status="analyzed", outcome=outcome)


@router.post("/sessions/{session_id}/stop", response_model=StopResponse)
async def stop_session(
    session: RecordingSession = Depends(get_session_or_404),
) -> StopResponse:
    """Stop recording, analyze the residual buffer, and return the session transcript."""
    final_transcript = await session.stop()
    return StopResponse(
        session_id=session.id,
        final_transcript=final_transcript,
        pending_segments=len(session.buffer.pending_segments),
    )


@router.post("/sessions/{session_id}/start", response_model=SessionStatusResponse)
async def resume_session(
    session: RecordingSession = Depends(get_session_or_404),
) -> SessionStatusResponse:
    """Resume recording on a stopped session."""
    session.start()
    return _status(session)


@router.get("/sessions/{session_id}/outcomes", response_model=list[AnalysisOutcome])
async def list_outcomes(
    session: RecordingSession = Depends(get_session_or_404),
) -> list[AnalysisOutcome]:
    """Most recent analysis pass outcomes, oldest first."""
    return list(session.recent_outcomes)


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(
    session_id: str = Path(..., description="Recording session id"),
    manager: SessionManager = Depends(get_session_manager),
) -> None:
    try:
        await manager.close(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
