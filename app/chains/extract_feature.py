"""Extract full feature details from buffered speech.

Produces the name, summary, user value, key capabilities, technical
approach, open questions and related features for one feature. The raw
finalized segments are passed alongside the joined text so the model
can see where the speaker paused.

Falls back to a title built from the first words of the transcript.
"""

from __future__ import annotations

from pydantic import ValidationError

from app.core.config import Settings
from app.core.llm import call_structured_llm
from app.core.logging import get_logger
from app.core.oracle import fallback_feature_extraction
from app.core.schemas_analysis import FeatureExtraction

logger = get_logger(__name__)

MAX_SEGMENTS = 20

EXTRACT_FEATURE_SYSTEM = """You are an expert product manager turning a live brainstorming transcript into a structured feature card.

## Output
- name: 2-5 words, title case, the capability area (e.g. "Payment Processing", "Google Authentication", "Airbnb for Horses"). Never a sentence.
- summary: 1-2 sentences on what the feature is.
- user_value: 1 sentence on why users care. Empty string if not discussed.
- key_capabilities: concrete behaviors that were actually mentioned, each 2-5 words (e.g. "Monthly subscription billing"). Do not invent items.
- technical_approach: only if implementation was discussed; options are candidate technologies, considerations are tradeoffs.
- open_questions: decisions left unresolved in the transcript.
- related_features: names of other product areas mentioned in passing.

Ignore filler ("I think", "you know", "blah blah")."""

EXTRACT_FEATURE_USER = """## Transcript
"{text}"

## Raw segments (in order)
{segments}

Extract the feature."""

EXTRACT_FEATURE_TOOL = {
    "name": "submit_feature",
    "description": "Submit the extracted feature details.",
    "input_schema": {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "summary": {"type": "string"},
            "user_value": {"type": "string"},
            "key_capabilities": {"type": "array", "items": {"type": "string"}},
            "technical_approach": {
                "type": "object",
                "properties": {
                    "options": {"type": "array", "items": {"type": "string"}},
                    "considerations": {"type": "array", "items": {"type": "string"}},
                },
            },
            "open_questions": {"type": "array", "items": {"type": "string"}},
            "related_features": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["name", "summary", "key_capabilities"],
    },
}


def _parse_feature(data: dict, text: str) -> FeatureExtraction:
    """Validate raw model output; a blank name takes the fallback title."""
    data = dict(data)
    name = str(data.get("name") or "").strip().strip("\"'")
    data["name"] = name or fallback_feature_extraction(text).name

    approach = data.get("technical_approach")
    if isinstance(approach, dict) and not (approach.get("options") or approach.get("considerations")):
        data["technical_approach"] = None

    for key in ("summary", "user_value"):
        if data.get(key) is None:
            data[key] = ""
    return FeatureExtraction.model_validate(data)


async def extract_feature(
    text: str,
    segments: list[str],
    settings: Settings | None = None,
) -> FeatureExtraction:
    """
    Extract feature details from a transcript.

    Args:
        text: Joined buffered speech
        segments: Finalized segments that make up the text
        settings: Settings override

    Returns:
        FeatureExtraction (title-only fallback on failure)
    """
    segment_lines = "\n".join(f"- {s}" for s in segments[-MAX_SEGMENTS:]) or "- (none)"
    user_prompt = EXTRACT_FEATURE_USER.format(text=text, segments=segment_lines)

    try:
        data = await call_structured_llm(
            EXTRACT_FEATURE_SYSTEM,
            user_prompt,
            EXTRACT_FEATURE_TOOL,
            chain="extract_feature",
            max_tokens=1200,
            settings=settings,
        )
        result = _parse_feature(data, text)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Malformed feature extraction, using title fallback: {e}")
        return fallback_feature_extraction(text)
    except Exception as e:
        logger.warning(f"Feature extraction failed, using title fallback: {e}")
        return fallback_feature_extraction(text)

    logger.debug(
        f"Extracted feature '{result.name}' with {len(result.key_capabilities)} capabilities"
    )
    return result
