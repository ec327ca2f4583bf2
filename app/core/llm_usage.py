"""Token and cost logging for oracle calls."""

import logging

from app.core.logging import get_logger, log_with_context

logger = get_logger(__name__)

# USD per 1M tokens (input, output), keyed by model family prefix.
# Dated snapshots ("claude-haiku-4-5-20251001") resolve to their family.
PRICE_PER_MTOK: dict[str, tuple[float, float]] = {
    "claude-haiku-4-5": (1.0, 5.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-3-5-haiku": (0.80, 4.0),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.0),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1-nano": (0.10, 0.40),
}


def _price_for(model: str) -> tuple[float, float] | None:
    # Longest prefix wins so gpt-4o-mini is not billed as gpt-4o
    families = [family for family in PRICE_PER_MTOK if model.startswith(family)]
    if not families:
        return None
    return PRICE_PER_MTOK[max(families, key=len)]


def estimate_cost_usd(model: str, tokens_input: int, tokens_output: int) -> float:
    price = _price_for(model)
    if price is None:
        logger.debug(f"Unpriced model '{model}', reporting $0")
        return 0.0
    input_rate, output_rate = price
    return round((tokens_input * input_rate + tokens_output * output_rate) / 1_000_000, 6)


def log_llm_usage(
    chain: str,
    model: str,
    provider: str,
    tokens_input: int,
    tokens_output: int,
    duration_ms: int = 0,
) -> None:
    """Emit one INFO line per oracle call: chain, model, tokens, estimated cost and latency."""
    log_with_context(
        logger,
        logging.INFO,
        f"LLM usage: {chain}",
        chain=chain,
        model=model,
        provider=provider,
        tokens_input=tokens_input,
        tokens_output=tokens_output,
        estimated_cost_usd=estimate_cost_usd(model, tokens_input, tokens_output),
        duration_ms=duration_ms,
    )
