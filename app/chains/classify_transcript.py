"""Classify buffered speech as a feature, a capability, or noise.

One small-model call per analysis pass. The classifier sees the joined
transcript plus the names and summaries of features already on the
canvas, so "also add an annual plan" can be recognized as a capability
of an existing feature.

Falls back to noise with zero confidence on any failure.

Usage:
    from app.chains.classify_transcript import classify_transcript

    result = await classify_transcript(text, store.feature_summaries())
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from app.core.config import Settings
from app.core.llm import call_structured_llm
from app.core.logging import get_logger
from app.core.oracle import fallback_classification
from app.core.schemas_analysis import Classification, FeatureSummary

logger = get_logger(__name__)

MAX_CONTEXT_FEATURES = 30

CLASSIFY_SYSTEM = """You are a product manager listening to a loose, messy conversation about building a software product. Decide what the latest stretch of speech is about.

## Types
- **feature**: a product capability area, business decision, pricing rule, user flow, design direction or tech-stack choice big enough to stand on its own. Examples: "We need Stripe subscriptions, twelve ninety-nine a month", "users should sign in with Google", "build it on Next.js with Postgres".
- **capability**: one specific behavior that belongs to a feature already on the canvas. Examples: "also add an annual plan option" when Payment Processing exists, "and a dark mode toggle" when Design System exists.
- **noise**: greetings, filler, hesitation, vague musings with no decision. Examples: "um, yeah, I think, you know", "that's interesting", "what should we do about...?"

## Rules
- Prefer feature or capability when in doubt: losing a real requirement is worse than an extra card.
- Only answer capability when an existing feature clearly owns the behavior.
- confidence is 0.0-1.0 for the chosen type.
- reasoning is one short sentence."""

CLASSIFY_USER = """## Features already on the canvas
{features_json}

## Transcript
"{text}"

Classify the transcript."""

CLASSIFY_TOOL = {
    "name": "submit_classification",
    "description": "Submit the classification of the transcript.",
    "input_schema": {
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["feature", "capability", "noise"]},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "reasoning": {"type": "string"},
        },
        "required": ["type", "confidence", "reasoning"],
    },
}


def _features_context(existing_features: list[FeatureSummary]) -> str:
    compact = [
        {"id": f.id, "name": f.name, "summary": f.summary}
        for f in existing_features[:MAX_CONTEXT_FEATURES]
    ]
    return json.dumps(compact, indent=2) if compact else "[] (none yet)"


def _parse_classification(data: dict) -> Classification:
    """Validate raw model output. Unknown types raise ValidationError."""
    if isinstance(data.get("type"), str):
        data = {**data, "type": data["type"].strip().lower()}
    return Classification.model_validate(data)


async def classify_transcript(
    text: str,
    existing_features: list[FeatureSummary],
    settings: Settings | None = None,
) -> Classification:
    """
    Classify one buffered transcript.

    Args:
        text: Joined buffered speech
        existing_features: Compact list of features already on the canvas
        settings: Settings override

    Returns:
        Classification (noise/0.0 on failure)
    """
    user_prompt = CLASSIFY_USER.format(
        features_json=_features_context(existing_features),
        text=text,
    )

    try:
        data = await call_structured_llm(
            CLASSIFY_SYSTEM,
            user_prompt,
            CLASSIFY_TOOL,
            chain="classify_transcript",
            max_tokens=300,
            settings=settings,
        )
        result = _parse_classification(data)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Malformed classification, defaulting to noise: {e}")
        return fallback_classification("malformed classification")
    except Exception as e:
        logger.warning(f"Classification failed, defaulting to noise: {e}")
        return fallback_classification()

    logger.debug(f"Classified transcript as {result.type.value} ({result.confidence:.2f})")
    return result
