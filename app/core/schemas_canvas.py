"""Pydantic schemas for the feature/capability canvas (the session's system of record)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Geometry
# ============================================================================


class Position(BaseModel):
    """A point on the canvas (top-left corner for nodes)."""
    x: float
    y: float


# ============================================================================
# Transcript
# ============================================================================


class TranscriptSegment(BaseModel):
    """A finalized span of speech. Immutable once created."""

    model_config = {"frozen": True}

    text: str
    timestamp: datetime = Field(default_factory=utc_now)


# ============================================================================
# Features and capabilities
# ============================================================================


class TechnicalApproach(BaseModel):
    """Implementation options discussed for a feature."""
    options: list[str] = []
    considerations: list[str] = []


class ConversationEntry(BaseModel):
    """One audit-trail entry: what was said and what the analysis took from it."""
    timestamp: datetime = Field(default_factory=utc_now)
    transcript: str
    insights: str = ""


class Feature(BaseModel):
    """A high-level product capability area (a group of capability nodes)."""

    id: str
    name: str = Field(..., min_length=1)
    color: str
    centroid: Position | None = None
    summary: str = ""
    user_value: str = ""
    key_capabilities: list[str] = []
    technical_approach: TechnicalApproach | None = None
    open_questions: list[str] = []
    related_features: list[str] = []
    conversation_history: list[ConversationEntry] = []
    capability_ids: list[str] = []
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Capability(BaseModel):
    """A concrete behavior owned by exactly one feature."""

    id: str
    title: str
    description: str = ""
    feature_id: str
    position: Position
    width: int
    height: int
    created_at: datetime = Field(default_factory=utc_now)


class CapabilityDraft(BaseModel):
    """A capability node about to be inserted (not yet owned by the store)."""
    title: str
    description: str = ""
    position: Position


class CanvasSnapshot(BaseModel):
    """Read-only copy of the store handed to subscribers and the API."""
    version: int
    features: list[Feature]
    capabilities: list[Capability]

    def feature(self, feature_id: str) -> Feature | None:
        return next((f for f in self.features if f.id == feature_id), None)

    def capabilities_of(self, feature_id: str) -> list[Capability]:
        return [c for c in self.capabilities if c.feature_id == feature_id]
