"""Non-destructive merge of newly extracted details into an existing feature."""

from __future__ import annotations

from typing import Iterable

from app.core.schemas_analysis import FeatureExtraction
from app.core.schemas_canvas import ConversationEntry, Feature, utc_now


def ordered_union(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Union preserving first-seen order. Exact (case-sensitive) dedup."""
    seen: set[str] = set()
    merged: list[str] = []
    for value in [*existing, *new]:
        if value not in seen:
            seen.add(value)
            merged.append(value)
    return merged


def merge_feature_details(
    feature: Feature,
    details: FeatureExtraction,
    conversation: ConversationEntry,
    additional_capability_ids: list[str] | None = None,
) -> Feature:
    """
    Merge extracted details into a feature, returning the updated copy.

    - summary / user_value: new value wins only when non-empty
    - technical_approach: replaced wholesale when the new value is present
    - key_capabilities / open_questions / related_features: ordered union
    - conversation_history: always appended
    - capability_ids: new ids appended, existing order kept

    Args:
        feature: Existing feature (not modified)
        details: Newly extracted details
        conversation: Audit entry for this pass
        additional_capability_ids: Ids of capability nodes created in this pass

    Returns:
        New Feature instance with merged fields
    """
    return feature.model_copy(
        update={
            "summary": details.summary or feature.summary,
            "user_value": details.user_value or feature.user_value,
            "technical_approach": details.technical_approach or feature.technical_approach,
            "key_capabilities": ordered_union(feature.key_capabilities, details.key_capabilities),
            "open_questions": ordered_union(feature.open_questions, details.open_questions),
            "related_features": ordered_union(feature.related_features, details.related_features),
            "conversation_history": [*feature.conversation_history, conversation],
            "capability_ids": [*feature.capability_ids, *(additional_capability_ids or [])],
            "updated_at": utc_now(),
        },
        deep=True,
    )
