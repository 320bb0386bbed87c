"""
Tests for cost estimation.
Run with: pytest tests/test_pricing.py
"""

import pytest

from relaychat.pricing import DEFAULT_INPUT_PRICES, PricingTable, estimate_tokens


# ---------------------------------------------------------------------------
# PricingTable
# ---------------------------------------------------------------------------

def test_known_model_uses_static_price():
    table = PricingTable()
    assert table.input_price("gpt-4o") == DEFAULT_INPUT_PRICES["gpt-4o"]


def test_unknown_model_uses_default_key():
    table = PricingTable()
    assert table.input_price("mystery-model") == DEFAULT_INPUT_PRICES["default"]


def test_override_wins():
    table = PricingTable({"gpt-4o": {"input": 0.0}})
    assert table.input_price("gpt-4o") == 0.0
    # Output not overridden: static table still applies
    assert table.output_price("gpt-4o") == 15.0


def test_local_model_priced_at_zero():
    table = PricingTable({"llama3.1": {"input": 0, "output": 0}})
    assert table.cost("llama3.1", 10_000, 10_000) == 0.0


def test_cost_per_million_tokens():
    table = PricingTable({"m": {"input": 2.0, "output": 4.0}})
    assert table.cost("m", 1_000_000, 500_000) == pytest.approx(4.0)


def test_set_price():
    table = PricingTable()
    table.set_price("m", output_price=9.0)
    assert table.overrides == {"m": {"output": 9.0}}
    assert table.output_price("m") == 9.0


def test_estimate_tokens():
    assert estimate_tokens("") == 1
    assert estimate_tokens("x" * 40) == 10

