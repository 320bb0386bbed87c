"""
Cost tracking: know what you're spending.

Per-token prices resolve in two tiers: user overrides (runtime_config.yaml,
`pricing:` key, USD per 1M tokens) win over the static table below, and
anything unknown falls back to the `default` entry. Local models cost
whatever you configure them to cost; there is no special case.

    runtime:
      pricing:
        llama3.1: {input: 0, output: 0}
"""

from __future__ import annotations

import logging
from typing import Mapping

logger = logging.getLogger(__name__)

FALLBACK_KEY = "default"

# USD per 1M tokens
DEFAULT_INPUT_PRICES: dict[str, float] = {
    "gpt-4o": 5.0,
    "gpt-4o-mini": 0.15,
    "gpt-4-turbo": 10.0,
    "gpt-4": 30.0,
    "gpt-3.5-turbo": 0.5,
    "claude-3-5-sonnet-latest": 3.0,
    "claude-3-opus-latest": 15.0,
    "claude-3-haiku-20240307": 0.25,
    "gemini-1.5-flash": 0.35,
    "gemini-1.5-pro": 3.5,
    FALLBACK_KEY: 1.0,
}

DEFAULT_OUTPUT_PRICES: dict[str, float] = {
    "gpt-4o": 15.0,
    "gpt-4o-mini": 0.60,
    "gpt-4-turbo": 30.0,
    "gpt-4": 60.0,
    "gpt-3.5-turbo": 1.5,
    "claude-3-5-sonnet-latest": 15.0,
    "claude-3-opus-latest": 75.0,
    "claude-3-haiku-20240307": 1.25,
    "gemini-1.5-flash": 1.05,
    "gemini-1.5-pro": 10.5,
    FALLBACK_KEY: 1.0,
}


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 chars per token for English text."""
    return max(1, len(text) // 4)


class PricingTable:
    """Two-tier price lookup: overrides, then defaults, then the fallback key."""

    def __init__(self, overrides: Mapping[str, Mapping[str, float]] | None = None):
        self.overrides = {k: dict(v) for k, v in (overrides or {}).items()}

    def _lookup(self, model: str, direction: str, defaults: Mapping[str, float]) -> float:
        override = self.overrides.get(model, {})
        if direction in override:
            return float(override[direction])
        return defaults.get(model, defaults[FALLBACK_KEY])

    def input_price(self, model: str) -> float:
        """USD per 1M input tokens."""
        return self._lookup(model, "input", DEFAULT_INPUT_PRICES)

    def output_price(self, model: str) -> float:
        """USD per 1M output tokens."""
        return self._lookup(model, "output", DEFAULT_OUTPUT_PRICES)

    def set_price(self, model: str, input_price: float | None = None, output_price: float | None = None) -> None:
        entry = self.overrides.setdefault(model, {})
        if input_price is not None:
            entry["input"] = input_price
        if output_price is not None:
            entry["output"] = output_price

    def cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        total = (
            input_tokens * self.input_price(model)
            + output_tokens * self.output_price(model)
        ) / 1_000_000
        return round(total, 8)
