"""Token and cost estimation per model tier."""
from __future__ import annotations

from agentloop_core.types import ModelTier

# USD per million tokens: (input, output)
TIER_PRICING: dict[ModelTier, tuple[float, float]] = {
    ModelTier.HAIKU: (1.0, 5.0),
    ModelTier.SONNET: (3.0, 15.0),
    ModelTier.OPUS: (15.0, 75.0),
}

# Cheaper tier that a downgrade proposal moves to.
DOWNGRADE_LADDER: dict[ModelTier, ModelTier] = {
    ModelTier.OPUS: ModelTier.SONNET,
    ModelTier.SONNET: ModelTier.HAIKU,
}


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 characters per token)."""
    return max(1, len(text) // 4) if text else 0


def estimate_cost(tier: ModelTier, tokens_in: int, tokens_out: int) -> float:
    price_in, price_out = TIER_PRICING[tier]
    return (tokens_in * price_in + tokens_out * price_out) / 1_000_000

