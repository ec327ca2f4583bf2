"""Transcript analysis oracle interface and its local fallbacks.

The pipeline only talks to a `RequirementOracle`. Three implementations
exist: the Anthropic and OpenAI backed `LLMOracle` (app.chains.llm_oracle)
and the offline `HeuristicOracle` (app.core.heuristic_oracle). Tests
inject a scripted fake.

Every oracle call is fallible. The fallbacks below are what a failed call
turns into, so a pass always ends with some outcome.
"""

from __future__ import annotations

from typing import Protocol

from app.core.config import Settings, get_settings
from app.core.schemas_analysis import (
    CapabilityExtraction,
    Classification,
    FeatureExtraction,
    FeatureMatch,
    FeatureSummary,
    MatchCandidate,
    TranscriptType,
)

TITLE_WORDS = 4


class RequirementOracle(Protocol):
    """The four black-box calls the analysis pipeline depends on."""

    async def classify(
        self, text: str, existing_features: list[FeatureSummary]
    ) -> Classification: ...

    async def extract_feature(self, text: str, segments: list[str]) -> FeatureExtraction: ...

    async def match_feature(self, text: str, candidates: list[MatchCandidate]) -> FeatureMatch: ...

    async def extract_capability(self, text: str) -> CapabilityExtraction: ...


# =============================================================================
# Fallbacks
# =============================================================================


def short_title(text: str, max_words: int = TITLE_WORDS) -> str:
    """First few words of the text, with an ellipsis when truncated."""
    words = text.split()
    if not words:
        return "Untitled"
    title = " ".join(words[:max_words])
    return f"{title}..." if len(words) > max_words else title


def fallback_classification(reason: str = "classification unavailable") -> Classification:
    return Classification(type=TranscriptType.NOISE, confidence=0.0, reasoning=reason)


def fallback_feature_extraction(text: str) -> FeatureExtraction:
    return FeatureExtraction(name=short_title(text))


def fallback_match(reason: str = "matching unavailable") -> FeatureMatch:
    return FeatureMatch(matched_id=None, confidence=0.0, reasoning=reason)


def fallback_capability(text: str) -> CapabilityExtraction:
    return CapabilityExtraction(title=short_title(text), description=text.strip())


# =============================================================================
# Factory
# =============================================================================


def build_oracle(settings: Settings | None = None) -> RequirementOracle:
    """Create the oracle selected by ORACLE_BACKEND."""
    settings = settings or get_settings()

    if settings.ORACLE_BACKEND == "heuristic":
        from app.core.heuristic_oracle import HeuristicOracle

        return HeuristicOracle()

    from app.chains.llm_oracle import LLMOracle

    return LLMOracle(settings=settings)
