"""
Canvas endpoints: snapshots, live updates, and direct user edits.

User edits (rename, drag, delete) write straight to the session's store
and bypass the analysis pipeline. Every write reaches SSE subscribers as
a full snapshot.
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.api.sessions import get_session_or_404
from app.core.feature_store import StoreError
from app.core.logging import get_logger
from app.core.schemas_canvas import CanvasSnapshot, Capability, Feature, Position
from app.services.recording_sessions import RecordingSession

logger = get_logger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 15.0


class FeatureUpdateRequest(BaseModel):
    """Rename and/or drag a feature group."""

    name: str | None = Field(default=None, description="New feature name")
    dx: float = Field(default=0.0, description="Horizontal drag delta")
    dy: float = Field(default=0.0, description="Vertical drag delta")


class CapabilityUpdateRequest(BaseModel):
    """Edit and/or move a capability node."""

    title: str | None = None
    description: str | None = None
    x: float | None = Field(default=None, description="New top-left x")
    y: float | None = Field(default=None, description="New top-left y")


@router.get("/sessions/{session_id}/canvas", response_model=CanvasSnapshot)
async def get_canvas(
    session: RecordingSession = Depends(get_session_or_404),
) -> CanvasSnapshot:
    return session.store.snapshot()


async def _snapshot_events(request: Request, session: RecordingSession):
    """
    Yield the current snapshot, then one event per store write.

    SSE format:
    event: snapshot
    data: {json snapshot}

    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[CanvasSnapshot] = asyncio.Queue()
    unsubscribe = session.store.subscribe(
        lambda snapshot: loop.call_soon_threadsafe(queue.put_nowait, snapshot)
    )
    try:
        yield f"event: snapshot\ndata: {session.store.snapshot().model_dump_json()}\n\n"
        while True:
            if await request.is_disconnected():
                break
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"event: snapshot\ndata: {snapshot.model_dump_json()}\n\n"
    finally:
        unsubscribe()
        logger.debug(f"Canvas stream closed for session {session.id}")


@router.get("/sessions/{session_id}/canvas/stream")
async def stream_canvas(
    request: Request,
    session: RecordingSession = Depends(get_session_or_404),
) -> StreamingResponse:
    """
    Stream canvas snapshots as Server-Sent Events.

    The first event is the current canvas; each store write sends the
    complete new canvas.
    """
    return StreamingResponse(
        _snapshot_events(request, session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.patch("/sessions/{session_id}/features/{feature_id}", response_model=Feature)
async def update_feature(
    feature_id: str,
    request: FeatureUpdateRequest,
    session: RecordingSession = Depends(get_session_or_404),
) -> Feature:
    """
    Rename a feature and/or drag it (its nodes move with it).

    Raises:
        HTTPException 404: If the feature does not exist
        HTTPException 400: If the new name is blank
    """
    try:
        feature = session.store.get_feature(feature_id)
        if request.name is not None:
            feature = session.store.rename_feature(feature_id, request.name)
        if request.dx or request.dy:
            feature = session.store.move_feature(feature_id, request.dx, request.dy)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(f"Updated feature {feature_id}", extra={"session_id": session.id})
    return feature


@router.delete("/sessions/{session_id}/features/{feature_id}", status_code=204)
async def delete_feature(
    feature_id: str,
    session: RecordingSession = Depends(get_session_or_404),
) -> None:
    """Delete a feature and all of its capability nodes."""
    try:
        session.store.delete_feature(feature_id)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    logger.info(f"Deleted feature {feature_id}", extra={"session_id": session.id})


@router.patch("/sessions/{session_id}/capabilities/{capability_id}", response_model=Capability)
async def update_capability(
    capability_id: str,
    request: CapabilityUpdateRequest,
    session: RecordingSession = Depends(get_session_or_404),
) -> Capability:
    """
    Edit a capability node's text and/or position.

    A missing coordinate keeps the node's current value.
    """
    try:
        position = None
        if request.x is not None or request.y is not None:
            current = session.store.get_capability(capability_id).position
            position = Position(
                x=request.x if request.x is not None else current.x,
                y=request.y if request.y is not None else current.y,
            )
        capability = session.store.update_capability(
            capability_id,
            title=request.title,
            description=request.description,
            position=position,
        )
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return capability


@router.delete("/sessions/{session_id}/capabilities/{capability_id}", status_code=204)
async def delete_capability(
    capability_id: str,
    session: RecordingSession = Depends(get_session_or_404),
) -> None:
    """Delete one capability node; its feature stays on the canvas."""
    try:
        session.store.delete_capability(capability_id)
    except StoreError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
