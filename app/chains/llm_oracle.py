"""RequirementOracle backed by the LLM chains."""

from __future__ import annotations

from app.chains.classify_transcript import classify_transcript
from app.chains.extract_capability import extract_capability
from app.chains.extract_feature import extract_feature
from app.chains.match_feature import match_feature
from app.core.config import Settings, get_settings
from app.core.schemas_analysis import (
    CapabilityExtraction,
    Classification,
    FeatureExtraction,
    FeatureMatch,
    FeatureSummary,
    MatchCandidate,
)


class LLMOracle:
    """Delegates each oracle call to its chain on the configured backend."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    async def classify(
        self, text: str, existing_features: list[FeatureSummary]
    ) -> Classification:
        return await classify_transcript(text, existing_features, settings=self.settings)

    async def extract_feature(self, text: str, segments: list[str]) -> FeatureExtraction:
        return await extract_feature(text, segments, settings=self.settings)

    async def match_feature(self, text: str, candidates: list[MatchCandidate]) -> FeatureMatch:
        return await match_feature(text, candidates, settings=self.settings)

    async def extract_capability(self, text: str) -> CapabilityExtraction:
        return await extract_capability(text, settings=self.settings)
