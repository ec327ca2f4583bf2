"""In-memory feature/capability store for one recording session.

The store is the only write path into the canvas. The analysis pipeline
uses create/merge/add; the UI uses the rename/move/delete commands. Every
write bumps `version` and pushes a snapshot to subscribers.

Invariants held here:
  - a capability always references an existing feature
  - a feature's capability_ids only grows through explicit appends
    (deletes are the only removals)
  - deleting a capability never deletes its feature
"""

from __future__ import annotations

import threading
import uuid
from typing import Callable

from app.core.feature_merge import merge_feature_details, ordered_union
from app.core.logging import get_logger
from app.core.schemas_analysis import FeatureExtraction, FeatureSummary, MatchCandidate
from app.core.schemas_canvas import (
    CanvasSnapshot,
    Capability,
    CapabilityDraft,
    ConversationEntry,
    Feature,
    Position,
    utc_now,
)

logger = get_logger(__name__)

FEATURE_COLORS = [
    "#3b82f6",
    "#8b5cf6",
    "#06b6d4",
    "#ec4899",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#84cc16",
    "#64748b",
    "#6366f1",
    "#14b8a6",
    "#f97316",
]

SnapshotListener = Callable[[CanvasSnapshot], None]


class StoreError(LookupError):
    """Base error for references to entities the store does not hold."""


class FeatureNotFoundError(StoreError):
    def __init__(self, feature_id: str):
        super().__init__(f"Feature {feature_id} not found")
        self.feature_id = feature_id


class CapabilityNotFoundError(StoreError):
    def __init__(self, capability_id: str):
        super().__init__(f"Capability {capability_id} not found")
        self.capability_id = capability_id


def new_id() -> str:
    return str(uuid.uuid4())


class FeatureStore:
    """Owned, mutable graph of features and their capability nodes."""

    def __init__(self, node_width: int = 288, node_height: int = 160):
        self.node_width = node_width
        self.node_height = node_height
        self._features: dict[str, Feature] = {}
        self._capabilities: dict[str, Capability] = {}
        self._listeners: list[SnapshotListener] = []
        self._lock = threading.RLock()
        self._color_index = 0
        self.version = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> CanvasSnapshot:
        with self._lock:
            return CanvasSnapshot(
                version=self.version,
                features=[f.model_copy(deep=True) for f in self._features.values()],
                capabilities=[c.model_copy(deep=True) for c in self._capabilities.values()],
            )

    def get_feature(self, feature_id: str) -> Feature:
        with self._lock:
            feature = self._features.get(feature_id)
            if feature is None:
                raise FeatureNotFoundError(feature_id)
            return feature.model_copy(deep=True)

    def get_capability(self, capability_id: str) -> Capability:
        with self._lock:
            capability = self._capabilities.get(capability_id)
            if capability is None:
                raise CapabilityNotFoundError(capability_id)
            return capability.model_copy(deep=True)

    def capabilities_of(self, feature_id: str) -> list[Capability]:
        with self._lock:
            feature = self._require_feature(feature_id)
            return [
                self._capabilities[cid].model_copy(deep=True)
                for cid in feature.capability_ids
                if cid in self._capabilities
            ]

    def feature_summaries(self) -> list[FeatureSummary]:
        """Compact context for the classifier."""
        with self._lock:
            return [
                FeatureSummary(id=f.id, name=f.name, summary=f.summary)
                for f in self._features.values()
            ]

    def match_candidates(self) -> list[MatchCandidate]:
        """Context for the feature matcher."""
        with self._lock:
            return [
                MatchCandidate(
                    id=f.id,
                    name=f.name,
                    summary=f.summary,
                    key_capabilities=list(f.key_capabilities),
                )
                for f in self._features.values()
            ]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _commit(self) -> None:
        """Bump version and notify listeners. Caller holds the lock."""
        self.version += 1
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Canvas snapshot listener failed")

    # ------------------------------------------------------------------
    # Pipeline writes
    # ------------------------------------------------------------------

    def create_feature(
        self,
        details: FeatureExtraction,
        centroid: Position | None,
        conversation: ConversationEntry,
        capabilities: list[CapabilityDraft] | None = None,
        color: str | None = None,
    ) -> tuple[Feature, list[Capability]]:
        """
        Insert a new feature together with its initial capability nodes.

        The feature and all drafts are written in one step so a pass never
        leaves a half-populated feature behind.

        Returns:
            Tuple of (created feature, created capabilities)
        """
        with self._lock:
            feature_id = new_id()
            created = [self._build_capability(draft, feature_id) for draft in capabilities or []]
            feature = Feature(
                id=feature_id,
                name=details.name,
                color=color or self._next_color(),
                centroid=centroid,
                summary=details.summary,
                user_value=details.user_value,
                key_capabilities=ordered_union([], details.key_capabilities),
                technical_approach=details.technical_approach,
                open_questions=ordered_union([], details.open_questions),
                related_features=ordered_union([], details.related_features),
                conversation_history=[conversation],
                capability_ids=[c.id for c in created],
            )
            self._features[feature_id] = feature
            for capability in created:
                self._capabilities[capability.id] = capability
            self._commit()

            logger.info(
                f"Created feature '{feature.name}' with {len(created)} capabilities",
                extra={"extra_data": {"feature_id": feature_id}},
            )
            return feature.model_copy(deep=True), [c.model_copy(deep=True) for c in created]

    def merge_feature(
        self,
        feature_id: str,
        details: FeatureExtraction,
        conversation: ConversationEntry,
        capabilities: list[CapabilityDraft] | None = None,
    ) -> tuple[Feature, list[Capability]]:
        """
        Merge extracted details into an existing feature and append new nodes.

        Raises:
            FeatureNotFoundError: If the feature was deleted before the merge
        """
        with self._lock:
            existing = self._require_feature(feature_id)
            created = [self._build_capability(draft, feature_id) for draft in capabilities or []]
            merged = merge_feature_details(
                existing, details, conversation, [c.id for c in created]
            )
            self._features[feature_id] = merged
            for capability in created:
                self._capabilities[capability.id] = capability
            self._commit()

            logger.info(
                f"Merged into feature '{merged.name}' (+{len(created)} capabilities)",
                extra={"extra_data": {"feature_id": feature_id}},
            )
            return merged.model_copy(deep=True), [c.model_copy(deep=True) for c in created]

    def add_capability(
        self,
        feature_id: str,
        draft: CapabilityDraft,
        conversation: ConversationEntry | None = None,
    ) -> Capability:
        """
        Create one capability node owned by an existing feature.

        The title joins the feature's key_capabilities so later extraction
        passes listing it again do not spawn a duplicate node.

        Raises:
            FeatureNotFoundError: If the owning feature does not exist
        """
        with self._lock:
            feature = self._require_feature(feature_id)
            capability = self._build_capability(draft, feature_id)
            self._capabilities[capability.id] = capability
            history = list(feature.conversation_history)
            if conversation is not None:
                history.append(conversation)
            self._features[feature_id] = feature.model_copy(
                update={
                    "capability_ids": [*feature.capability_ids, capability.id],
                    "key_capabilities": ordered_union(feature.key_capabilities, [draft.title]),
                    "conversation_history": history,
                    "updated_at": utc_now(),
                }
            )
            self._commit()
            return capability.model_copy(deep=True)

    # ------------------------------------------------------------------
    # User commands (bypass the pipeline)
    # ------------------------------------------------------------------

    def rename_feature(self, feature_id: str, name: str) -> Feature:
        name = name.strip()
        if not name:
            raise ValueError("Feature name cannot be empty")
        with self._lock:
            feature = self._require_feature(feature_id)
            updated = feature.model_copy(update={"name": name, "updated_at": utc_now()})
            self._features[feature_id] = updated
            self._commit()
            return updated.model_copy(deep=True)

    def move_feature(self, feature_id: str, dx: float, dy: float) -> Feature:
        """Shift a feature's centroid and all of its nodes by the same delta."""
        with self._lock:
            feature = self._require_feature(feature_id)
            centroid = feature.centroid
            if centroid is not None:
                centroid = Position(x=centroid.x + dx, y=centroid.y + dy)
            updated = feature.model_copy(update={"centroid": centroid, "updated_at": utc_now()})
            self._features[feature_id] = updated
            for cid in feature.capability_ids:
                capability = self._capabilities.get(cid)
                if capability is None:
                    continue
                self._capabilities[cid] = capability.model_copy(
                    update={
                        "position": Position(
                            x=capability.position.x + dx, y=capability.position.y + dy
                        )
                    }
                )
            self._commit()
            return updated.model_copy(deep=True)

    def update_capability(
        self,
        capability_id: str,
        title: str | None = None,
        description: str | None = None,
        position: Position | None = None,
    ) -> Capability:
        with self._lock:
            capability = self._require_capability(capability_id)
            update: dict = {}
            if title is not None:
                if not title.strip():
                    raise ValueError("Capability title cannot be empty")
                update["title"] = title.strip()
            if description is not None:
                update["description"] = description
            if position is not None:
                update["position"] = position
            updated = capability.model_copy(update=update)
            self._capabilities[capability_id] = updated
            self._commit()
            return updated.model_copy(deep=True)

    def delete_capability(self, capability_id: str) -> None:
        """Remove a node. Its feature persists even if left empty."""
        with self._lock:
            capability = self._require_capability(capability_id)
            del self._capabilities[capability_id]
            owner = self._features.get(capability.feature_id)
            if owner is not None:
                self._features[owner.id] = owner.model_copy(
                    update={
                        "capability_ids": [c for c in owner.capability_ids if c != capability_id],
                        "updated_at": utc_now(),
                    }
                )
            self._commit()

    def delete_feature(self, feature_id: str) -> None:
        """Remove a feature and every node it owns."""
        with self._lock:
            feature = self._require_feature(feature_id)
            del self._features[feature_id]
            for cid in feature.capability_ids:
                self._capabilities.pop(cid, None)
            self._commit()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_feature(self, feature_id: str) -> Feature:
        feature = self._features.get(feature_id)
        if feature is None:
            raise FeatureNotFoundError(feature_id)
        return feature

    def _require_capability(self, capability_id: str) -> Capability:
        capability = self._capabilities.get(capability_id)
        if capability is None:
            raise CapabilityNotFoundError(capability_id)
        return capability

    def _build_capability(self, draft: CapabilityDraft, feature_id: str) -> Capability:
        return Capability(
            id=new_id(),
            title=draft.title,
            description=draft.description,
            feature_id=feature_id,
            position=draft.position,
            width=self.node_width,
            height=self.node_height,
        )

    def _next_color(self) -> str:
        color = FEATURE_COLORS[self._color_index % len(FEATURE_COLORS)]
        self._color_index += 1
        return color
