"""Extract a single capability (title + description) from buffered speech."""

from __future__ import annotations

from pydantic import ValidationError

from app.core.config import Settings
from app.core.llm import call_structured_llm
from app.core.logging import get_logger
from app.core.oracle import fallback_capability
from app.core.schemas_analysis import CapabilityExtraction

logger = get_logger(__name__)

EXTRACT_CAPABILITY_SYSTEM = """You extract one concrete product behavior from brainstorm speech.

- title: 2-5 words, title case, no trailing punctuation (e.g. "Annual Plan Option", "Dark Mode Toggle").
- description: 1-2 sentences describing the behavior. Empty string if nothing beyond the title was said.
- Ignore filler words."""

EXTRACT_CAPABILITY_TOOL = {
    "name": "submit_capability",
    "description": "Submit the extracted capability.",
    "input_schema": {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "description": {"type": "string"},
        },
        "required": ["title"],
    },
}


def _parse_capability(data: dict, text: str) -> CapabilityExtraction:
    title = str(data.get("title") or "").strip().strip("\"'").rstrip(".")
    description = str(data.get("description") or "").strip()
    if not title:
        return fallback_capability(text)
    return CapabilityExtraction(title=title, description=description)


async def extract_capability(text: str, settings: Settings | None = None) -> CapabilityExtraction:
    """
    Extract one capability from a transcript.

    Falls back to the first words of the transcript as the title and the
    full transcript as the description.
    """
    try:
        data = await call_structured_llm(
            EXTRACT_CAPABILITY_SYSTEM,
            f'## Transcript\n"{text}"\n\nExtract the capability.',
            EXTRACT_CAPABILITY_TOOL,
            chain="extract_capability",
            max_tokens=300,
            settings=settings,
        )
        return _parse_capability(data, text)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Malformed capability extraction, using fallback: {e}")
    except Exception as e:
        logger.warning(f"Capability extraction failed, using fallback: {e}")
    return fallback_capability(text)
