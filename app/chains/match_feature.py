"""Match buffered speech to an existing feature on the canvas.

The matcher sees every feature's id, name, summary and key capabilities
and answers with the id of the feature the speech is about (or null).
A returned id that is not among the candidates is treated as no match.

Falls back to no match on failure, so the caller creates a new feature
instead of merging into a wrong one.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from app.core.config import Settings
from app.core.llm import call_structured_llm
from app.core.logging import get_logger
from app.core.oracle import fallback_match
from app.core.schemas_analysis import FeatureMatch, MatchCandidate

logger = get_logger(__name__)

MATCH_SYSTEM = """You decide whether new speech from a product brainstorm is about a feature that already exists on the canvas.

## Rules
- Match only when the speech clearly extends, refines or adds a behavior to that feature (e.g. "add an annual plan option" extends "Payment Processing").
- Paraphrases and synonyms count as the same feature ("login" vs "Authentication").
- Unrelated topics, or topics only loosely adjacent, are NOT a match: return null.
- matched_id must be one of the candidate ids, copied exactly, or null.
- confidence is 0.0-1.0 that the match is correct (for null, how sure you are nothing matches)."""

MATCH_USER = """## Existing features
{candidates_json}

## New speech
"{text}"

Which feature is this about?"""

MATCH_TOOL = {
    "name": "submit_feature_match",
    "description": "Submit the matched feature id (or null) with confidence.",
    "input_schema": {
        "type": "object",
        "properties": {
            "matched_id": {"type": ["string", "null"]},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "reasoning": {"type": "string"},
        },
        "required": ["matched_id", "confidence"],
    },
}


def _parse_match(data: dict, candidates: list[MatchCandidate]) -> FeatureMatch:
    result = FeatureMatch.model_validate(data)
    if result.matched_id in ("", "null", "none"):
        result = result.model_copy(update={"matched_id": None})
    candidate_ids = {c.id for c in candidates}
    if result.matched_id is not None and result.matched_id not in candidate_ids:
        logger.warning(f"Matcher returned unknown feature id {result.matched_id}, ignoring")
        return fallback_match("matched id not among candidates")
    return result


async def match_feature(
    text: str,
    candidates: list[MatchCandidate],
    settings: Settings | None = None,
) -> FeatureMatch:
    """
    Find the existing feature a transcript belongs to.

    Args:
        text: Joined buffered speech
        candidates: Features currently on the canvas
        settings: Settings override

    Returns:
        FeatureMatch (null match when there are no candidates or on failure)
    """
    if not candidates:
        return fallback_match("no existing features")

    candidates_json = json.dumps(
        [c.model_dump() for c in candidates],
        indent=2,
    )
    user_prompt = MATCH_USER.format(candidates_json=candidates_json, text=text)

    try:
        data = await call_structured_llm(
            MATCH_SYSTEM,
            user_prompt,
            MATCH_TOOL,
            chain="match_feature",
            max_tokens=300,
            settings=settings,
        )
        result = _parse_match(data, candidates)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Malformed feature match, treating as no match: {e}")
        return fallback_match("malformed match")
    except Exception as e:
        logger.warning(f"Feature matching failed, treating as no match: {e}")
        return fallback_match()

    logger.debug(f"Feature match: {result.matched_id} ({result.confidence:.2f})")
    return result
