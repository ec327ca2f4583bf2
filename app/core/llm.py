"""LLM client utilities shared by the transcript analysis chains."""

import asyncio
import json
import re
import time
from typing import Any

from langchain_openai import ChatOpenAI

from app.core.config import Settings, get_settings
from app.core.llm_usage import log_llm_usage
from app.core.logging import get_logger

logger = get_logger(__name__)

_INITIAL_DELAY = 1.0


def get_llm(
    model: str | None = None,
    temperature: float = 0.2,
    settings: Settings | None = None,
) -> ChatOpenAI:
    """
    Get configured OpenAI chat model for LangChain calls.

    Args:
        model: Model name override (defaults to ORACLE_OPENAI_MODEL)
        temperature: Temperature for generation (default 0.2)
        settings: Settings to read the key and default model from (defaults to the cached ones)

    Returns:
        ChatOpenAI bound to OPENAI_API_KEY and the requested (or default) model
    """
    settings = settings or get_settings()

    return ChatOpenAI(
        api_key=settings.OPENAI_API_KEY,
        model=model or settings.ORACLE_OPENAI_MODEL,
        temperature=temperature,
    )


def _strip_llm_fences(raw_output: str) -> str:
    """Reduce model text to the JSON it carries.

    Prefers a ```json fenced block, then the outermost {...} span.
    """
    text = raw_output.strip()

    fenced = re.search(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
    if fenced:
        return fenced.group(1).strip()

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def parse_llm_json_dict(raw_output: str) -> dict:
    """
    Decode a JSON object from free-form model text.

    Raises:
        json.JSONDecodeError: If no valid JSON remains after stripping fences
        ValueError: If the JSON is not an object
    """
    parsed = json.loads(_strip_llm_fences(raw_output))
    if isinstance(parsed, str):
        # Double-encoded JSON guard
        parsed = json.loads(parsed)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected JSON object, got {type(parsed).__name__}")
    return parsed


async def call_structured_llm(
    system_prompt: str,
    user_prompt: str,
    tool: dict[str, Any],
    chain: str,
    max_tokens: int = 800,
    settings: Settings | None = None,
) -> dict:
    """
    Run one structured oracle call on the configured backend.

    Anthropic calls force `tool` via tool_choice; OpenAI calls ask for a
    JSON object shaped like the tool's input schema.

    Args:
        system_prompt: System instructions
        user_prompt: User message
        tool: Anthropic tool definition (name, description, input_schema)
        chain: Chain name for usage logging
        max_tokens: Output token cap
        settings: Settings override

    Returns:
        Raw dict produced by the model (not yet validated)
    """
    settings = settings or get_settings()
    if settings.ORACLE_BACKEND == "openai":
        return await _call_openai(system_prompt, user_prompt, tool, chain, settings)
    return await _call_anthropic(system_prompt, user_prompt, tool, chain, max_tokens, settings)


async def _call_anthropic(
    system_prompt: str,
    user_prompt: str,
    tool: dict[str, Any],
    chain: str,
    max_tokens: int,
    settings: Settings,
) -> dict:
    """Anthropic tool_use call with exponential backoff on transient errors."""
    from anthropic import (
        APIConnectionError,
        APITimeoutError,
        AsyncAnthropic,
        InternalServerError,
        RateLimitError,
    )

    client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
    max_retries = settings.ORACLE_MAX_RETRIES

    for attempt in range(max_retries + 1):
        try:
            start = time.time()
            response = await client.messages.create(
                model=settings.ORACLE_MODEL,
                max_tokens=max_tokens,
                temperature=0.2,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                tools=[tool],
                tool_choice={"type": "tool", "name": tool["name"]},
            )
            duration_ms = int((time.time() - start) * 1000)
            log_llm_usage(
                chain=chain,
                model=settings.ORACLE_MODEL,
                provider="anthropic",
                tokens_input=response.usage.input_tokens,
                tokens_output=response.usage.output_tokens,
                duration_ms=duration_ms,
            )

            for block in response.content:
                if block.type == "tool_use":
                    return dict(block.input)

            # No tool_use block: try the text
            logger.warning(f"No tool_use block in {chain} response, falling back to text")
            for block in response.content:
                if hasattr(block, "text"):
                    return parse_llm_json_dict(block.text)
            raise ValueError(f"{chain} response had no usable content")

        except (APIConnectionError, APITimeoutError, InternalServerError, RateLimitError) as e:
            if attempt >= max_retries:
                raise
            delay = _INITIAL_DELAY * (2 ** attempt)
            logger.warning(
                f"{chain} attempt {attempt + 1}/{max_retries + 1} failed "
                f"({type(e).__name__}), retrying in {delay}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"{chain} exhausted retries")  # unreachable


async def _call_openai(
    system_prompt: str,
    user_prompt: str,
    tool: dict[str, Any],
    chain: str,
    settings: Settings,
) -> dict:
    """OpenAI call through LangChain, parsed as a JSON object."""
    from langchain_core.messages import HumanMessage, SystemMessage

    llm = get_llm(settings.ORACLE_OPENAI_MODEL, settings=settings)
    schema_hint = json.dumps(tool["input_schema"], indent=2)
    messages = [
        SystemMessage(
            content=f"{system_prompt}\n\nRespond with ONLY a JSON object matching this schema "
            f"(no markdown):\n{schema_hint}"
        ),
        HumanMessage(content=user_prompt),
    ]

    start = time.time()
    response = await llm.ainvoke(messages)
    duration_ms = int((time.time() - start) * 1000)

    usage = getattr(response, "usage_metadata", None) or {}
    log_llm_usage(
        chain=chain,
        model=settings.ORACLE_OPENAI_MODEL,
        provider="openai",
        tokens_input=usage.get("input_tokens", 0),
        tokens_output=usage.get("output_tokens", 0),
        duration_ms=duration_ms,
    )
    return parse_llm_json_dict(str(response.content))
