"""Pydantic schemas for transcript analysis (oracle inputs/outputs and pass outcomes)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from app.core.schemas_canvas import TechnicalApproach, utc_now


class TranscriptType(str, Enum):
    """What a chunk of buffered speech is about."""
    FEATURE = "feature"
    CAPABILITY = "capability"
    NOISE = "noise"


def _clamp_confidence(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


# ============================================================================
# Oracle inputs
# ============================================================================


class FeatureSummary(BaseModel):
    """Compact feature context given to the classifier."""
    id: str
    name: str
    summary: str = ""


class MatchCandidate(FeatureSummary):
    """Feature context given to the matcher."""
    key_capabilities: list[str] = []


# ============================================================================
# Oracle outputs
# ============================================================================


class Classification(BaseModel):
    """Classifier verdict for one buffered transcript."""

    type: TranscriptType
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _clamp_confidence(value)


class FeatureExtraction(BaseModel):
    """Full feature details extracted from a transcript."""

    name: str = Field(..., min_length=1)
    summary: str = ""
    user_value: str = ""
    key_capabilities: list[str] = []
    technical_approach: TechnicalApproach | None = None
    open_questions: list[str] = []
    related_features: list[str] = []

    @field_validator("key_capabilities", "open_questions", "related_features")
    @classmethod
    def _drop_blank(cls, values: list[str]) -> list[str]:
        return [v.strip() for v in values if v and v.strip()]


class FeatureMatch(BaseModel):
    """Matcher verdict: which existing feature (if any) the text is about."""

    matched_id: str | None = None
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _clamp_confidence(value)


class CapabilityExtraction(BaseModel):
    """A single capability extracted from a transcript."""
    title: str = Field(..., min_length=1)
    description: str = ""


# ============================================================================
# Pass outcome
# ============================================================================


class AnalysisAction(str, Enum):
    """What an analysis pass did to the store."""
    DISCARDED_NOISE = "discarded_noise"
    MERGED_FEATURE = "merged_feature"
    CREATED_FEATURE = "created_feature"
    ADDED_CAPABILITY = "added_capability"
    CREATED_FEATURE_FROM_CAPABILITY = "created_feature_from_capability"


class AnalysisOutcome(BaseModel):
    """Transient result of one analysis pass."""

    pass_id: str
    transcript: str
    classification: Classification
    effective_type: TranscriptType
    overridden: bool = False
    action: AnalysisAction
    feature_id: str | None = None
    created_capability_ids: list[str] = []
    match: FeatureMatch | None = None
    extraction: FeatureExtraction | None = None
    capability: CapabilityExtraction | None = None
    completed_at: datetime = Field(default_factory=utc_now)
