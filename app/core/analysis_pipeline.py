"""Transcript analysis pipeline: classify → route → extract → match → merge/create.

One pass turns the buffered speech into at most one structural change on
the canvas:

  noise (confident)         → nothing
  feature, matched          → merge details into the feature, add nodes
                              for capabilities it did not know yet
  feature, unmatched        → new feature with one node per capability
  capability, matched       → one node on the matched feature
  capability, unmatched     → new feature (same as feature, unmatched)

Thresholds:
  - noise is discarded only when confidence > NOISE_DISCARD_CONFIDENCE
  - any confidence < LOW_CONFIDENCE_OVERRIDE, and any non-discarded noise,
    is treated as a feature
  - a match is accepted when confidence >= FEATURE_MATCH_CONFIDENCE

All oracle calls finish before the store is written, and each write is a
single store call, so a failing pass never leaves a partial feature.

Usage:
    from app.core.analysis_pipeline import AnalysisPipeline

    pipeline = AnalysisPipeline(store, oracle)
    outcome = await pipeline.run(batch.text, batch.texts, pass_id=batch.pass_id)
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import Awaitable, Callable

from app.core.config import Settings, get_settings
from app.core.feature_store import FeatureStore
from app.core.layout import place, place_many, random_centroid
from app.core.logging import get_logger, log_with_context
from app.core.oracle import (
    RequirementOracle,
    fallback_capability,
    fallback_classification,
    fallback_feature_extraction,
    fallback_match,
)
from app.core.schemas_analysis import (
    AnalysisAction,
    AnalysisOutcome,
    CapabilityExtraction,
    Classification,
    FeatureExtraction,
    FeatureMatch,
    MatchCandidate,
    TranscriptType,
)
from app.core.schemas_canvas import Capability, CapabilityDraft, ConversationEntry, Feature

logger = get_logger(__name__)

CapabilityHook = Callable[[Feature, Capability, str], Awaitable[None]]


def resolve_type(classification: Classification, settings: Settings) -> TranscriptType | None:
    """
    Apply the noise/override policy to a raw classification.

    Returns:
        The type to route on, or None when the text is confidently noise
    """
    if (
        classification.type == TranscriptType.NOISE
        and classification.confidence > settings.NOISE_DISCARD_CONFIDENCE
    ):
        return None
    if (
        classification.type == TranscriptType.NOISE
        or classification.confidence < settings.LOW_CONFIDENCE_OVERRIDE
    ):
        return TranscriptType.FEATURE
    return classification.type


def accept_match(match: FeatureMatch, settings: Settings) -> str | None:
    """Matched feature id if the match clears the threshold, else None."""
    if match.matched_id is not None and match.confidence >= settings.FEATURE_MATCH_CONFIDENCE:
        return match.matched_id
    return None


def new_capability_names(
    extracted: list[str],
    key_capabilities: list[str],
    node_titles: list[str],
) -> list[str]:
    """Extracted capability names the feature knows neither as key capability nor as node.

    Comparison is case-insensitive; duplicates within `extracted` collapse
    to their first spelling.
    """
    known = {n.strip().lower() for n in [*key_capabilities, *node_titles]}
    fresh: list[str] = []
    for name in extracted:
        key = name.strip().lower()
        if key and key not in known:
            known.add(key)
            fresh.append(name.strip())
    return fresh


class AnalysisPipeline:
    """Runs analysis passes against one store with one oracle."""

    def __init__(
        self,
        store: FeatureStore,
        oracle: RequirementOracle,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        on_capability_added: CapabilityHook | None = None,
    ):
        self.store = store
        self.oracle = oracle
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()
        self.on_capability_added = on_capability_added
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Guarded oracle calls
    # ------------------------------------------------------------------

    async def _classify(self, text: str) -> Classification:
        try:
            return await self.oracle.classify(text, self.store.feature_summaries())
        except Exception as e:
            logger.warning(f"Oracle classify failed, using fallback: {e}")
            return fallback_classification()

    async def _extract_feature(self, text: str, segments: list[str]) -> FeatureExtraction:
        try:
            return await self.oracle.extract_feature(text, segments)
        except Exception as e:
            logger.warning(f"Oracle extract_feature failed, using fallback: {e}")
            return fallback_feature_extraction(text)

    async def _match_feature(self, text: str) -> tuple[FeatureMatch, str | None]:
        candidates = self.store.match_candidates()
        if not candidates:
            return fallback_match("no existing features"), None
        try:
            match = await self.oracle.match_feature(text, candidates)
        except Exception as e:
            logger.warning(f"Oracle match_feature failed, using fallback: {e}")
            match = fallback_match()
        return match, accept_match(self._known_match(match, candidates), self.settings)

    @staticmethod
    def _known_match(match: FeatureMatch, candidates: list[MatchCandidate]) -> FeatureMatch:
        if match.matched_id is not None and match.matched_id not in {c.id for c in candidates}:
            return fallback_match("matched id not among candidates")
        return match

    async def _extract_capability(self, text: str) -> CapabilityExtraction:
        try:
            return await self.oracle.extract_capability(text)
        except Exception as e:
            logger.warning(f"Oracle extract_capability failed, using fallback: {e}")
            return fallback_capability(text)

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def run(
        self,
        text: str,
        segments: list[str] | None = None,
        pass_id: str | None = None,
    ) -> AnalysisOutcome:
        """
        Run one analysis pass over buffered speech.

        Args:
            text: Buffered segments joined with single spaces
            segments: The raw segments (extraction context)
            pass_id: Id for logging; generated when omitted

        Returns:
            AnalysisOutcome describing what changed

        Raises:
            StoreError: If a referenced feature disappeared mid-pass
        """
        pass_id = pass_id or str(uuid.uuid4())
        segments = segments if segments is not None else [text]

        classification = await self._classify(text)
        effective = resolve_type(classification, self.settings)

        log_with_context(
            logger,
            logging.INFO,
            f"Classified as {classification.type.value} ({classification.confidence:.2f})"
            f" → {effective.value if effective else 'discard'}",
            pass_id=pass_id,
            reasoning=classification.reasoning,
        )

        base = {
            "pass_id": pass_id,
            "transcript": text,
            "classification": classification,
            "overridden": effective is not None and effective != classification.type,
        }

        if effective is None:
            return AnalysisOutcome(
                **base,
                effective_type=TranscriptType.NOISE,
                action=AnalysisAction.DISCARDED_NOISE,
            )

        if effective == TranscriptType.CAPABILITY:
            return await self._run_capability(text, segments, classification, base)
        return await self._run_feature(text, segments, classification, base)

    async def _run_feature(
        self,
        text: str,
        segments: list[str],
        classification: Classification,
        base: dict,
    ) -> AnalysisOutcome:
        details = await self._extract_feature(text, segments)
        match, matched_id = await self._match_feature(text)
        conversation = ConversationEntry(transcript=text, insights=classification.reasoning)

        if matched_id is None:
            feature, created = self._create_feature(details, conversation)
            self._log_action(base, f"Created feature '{feature.name}'", feature.id)
            return AnalysisOutcome(
                **base,
                effective_type=TranscriptType.FEATURE,
                action=AnalysisAction.CREATED_FEATURE,
                feature_id=feature.id,
                created_capability_ids=[c.id for c in created],
                match=match,
                extraction=details,
            )

        existing = self.store.get_feature(matched_id)
        nodes = self.store.capabilities_of(matched_id)
        fresh = new_capability_names(
            details.key_capabilities,
            existing.key_capabilities,
            [n.title for n in nodes],
        )
        positions = place_many(
            nodes,
            existing.centroid,
            len(fresh),
            self.settings.NODE_WIDTH,
            self.settings.NODE_HEIGHT,
            self.settings.LAYOUT_PADDING,
            self.settings.LAYOUT_MAX_RINGS,
        )
        drafts = [CapabilityDraft(title=name, position=pos) for name, pos in zip(fresh, positions)]
        feature, created = self.store.merge_feature(matched_id, details, conversation, drafts)

        self._log_action(
            base, f"Merged into feature '{feature.name}' (+{len(created)} capabilities)", feature.id
        )
        return AnalysisOutcome(
            **base,
            effective_type=TranscriptType.FEATURE,
            action=AnalysisAction.MERGED_FEATURE,
            feature_id=feature.id,
            created_capability_ids=[c.id for c in created],
            match=match,
            extraction=details,
        )

    async def _run_capability(
        self,
        text: str,
        segments: list[str],
        classification: Classification,
        base: dict,
    ) -> AnalysisOutcome:
        match, matched_id = await self._match_feature(text)

        if matched_id is None:
            # No owner for the capability: treat the same text as a new feature
            details = await self._extract_feature(text, segments)
            conversation = ConversationEntry(transcript=text, insights=classification.reasoning)
            feature, created = self._create_feature(details, conversation)
            self._log_action(
                base, f"Unmatched capability became feature '{feature.name}'", feature.id
            )
            return AnalysisOutcome(
                **base,
                effective_type=TranscriptType.CAPABILITY,
                action=AnalysisAction.CREATED_FEATURE_FROM_CAPABILITY,
                feature_id=feature.id,
                created_capability_ids=[c.id for c in created],
                match=match,
                extraction=details,
            )

        extracted = await self._extract_capability(text)
        existing = self.store.get_feature(matched_id)
        position = place(
            self.store.capabilities_of(matched_id),
            existing.centroid,
            self.settings.NODE_WIDTH,
            self.settings.NODE_HEIGHT,
            self.settings.LAYOUT_PADDING,
            self.settings.LAYOUT_MAX_RINGS,
        )
        insights = f"Added capability '{extracted.title}'"
        if classification.reasoning:
            insights = f"{insights}. {classification.reasoning}"
        capability = self.store.add_capability(
            matched_id,
            CapabilityDraft(
                title=extracted.title, description=extracted.description, position=position
            ),
            ConversationEntry(transcript=text, insights=insights),
        )
        self._log_action(base, f"Added capability '{capability.title}'", matched_id)
        self._notify_capability_added(matched_id, capability, text)

        return AnalysisOutcome(
            **base,
            effective_type=TranscriptType.CAPABILITY,
            action=AnalysisAction.ADDED_CAPABILITY,
            feature_id=matched_id,
            created_capability_ids=[capability.id],
            match=match,
            capability=extracted,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_feature(
        self, details: FeatureExtraction, conversation: ConversationEntry
    ) -> tuple[Feature, list[Capability]]:
        centroid = random_centroid(self.rng)
        names = new_capability_names(details.key_capabilities, [], [])
        positions = place_many(
            [],
            centroid,
            len(names),
            self.settings.NODE_WIDTH,
            self.settings.NODE_HEIGHT,
            self.settings.LAYOUT_PADDING,
            self.settings.LAYOUT_MAX_RINGS,
        )
        drafts = [CapabilityDraft(title=name, position=pos) for name, pos in zip(names, positions)]
        return self.store.create_feature(details, centroid, conversation, drafts)

    def _notify_capability_added(self, feature_id: str, capability: Capability, text: str) -> None:
        """Fire the best-effort commentary hook without waiting for it."""
        if self.on_capability_added is None:
            return
        feature = self.store.get_feature(feature_id)
        task = asyncio.create_task(self._run_hook(feature, capability, text))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_hook(self, feature: Feature, capability: Capability, text: str) -> None:
        try:
            await self.on_capability_added(feature, capability, text)
        except Exception:
            logger.exception("Capability commentary hook failed")

    @staticmethod
    def _log_action(base: dict, msg: str, feature_id: str) -> None:
        log_with_context(logger, logging.INFO, msg, pass_id=base["pass_id"], feature_id=feature_id)
