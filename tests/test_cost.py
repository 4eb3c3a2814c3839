"""Tests for core/cost.py."""

from decimal import Decimal

import pytest

from koi_engine.core.cost import CostTracker, calculate_cost, model_pricing
from koi_engine.core.types import TokenUsage


class TestModelPricing:
    """Substring pricing lookup."""

    @pytest.mark.parametrize(
        "model,expected",
        [
            ("claude-opus-4", (Decimal("15.0"), Decimal("75.0"))),
            ("anthropic:claude-sonnet-4-5", (Decimal("3.0"), Decimal("15.0"))),
            ("gpt-4o-mini-2024-07-18", (Decimal("0.15"), Decimal("0.6"))),
            ("gpt-4o", (Decimal("2.5"), Decimal("10.0"))),
            ("GPT-4.1-MINI", (Decimal("0.4"), Decimal("1.6"))),
            ("o3-mini", (Decimal("1.1"), Decimal("4.4"))),
        ],
    )
    def test_known_models(self, model, expected):
        """The most specific match wins."""
        assert model_pricing(model) == expected

    def test_local_models_are_free(self):
        """Open-weight models run locally cost nothing."""
        assert model_pricing("ollama/llama3.1:8b") == (Decimal("0"), Decimal("0"))

    def test_unknown_model_uses_default(self):
        """Unknown models get a conservative default."""
        assert model_pricing("mystery-model") == (Decimal("1.0"), Decimal("3.0"))

    def test_calculate_cost(self):
        """Per-million pricing for input and output."""
        cost = calculate_cost("claude-sonnet-4", TokenUsage(input_tokens=1_000_000, output_tokens=100_000))
        assert cost == Decimal("4.5")


class TestCostTracker:
    """Spend accumulation."""

    def test_totals_and_breakdowns(self):
        """Costs add up per model and per phase."""
        tracker = CostTracker()
        tracker.record("gpt-4o", TokenUsage(1_000_000, 0), phase="execute")
        tracker.record("gpt-4o-mini", TokenUsage(1_000_000, 0), phase="evaluate")
        tracker.record("gpt-4o", TokenUsage(0, 100_000), phase="execute")

        assert tracker.total_usd == Decimal("2.5") + Decimal("0.15") + Decimal("1.0")
        assert tracker.phase_breakdown()[0] == ("execute", Decimal("3.5"))
        top = tracker.model_breakdown()[0]
        assert top.model == "gpt-4o"
        assert top.calls == 2

    def test_no_model_is_free(self):
        """Calls without a model name are counted but cost nothing."""
        tracker = CostTracker()
        assert tracker.record(None, TokenUsage(5000, 5000)) == Decimal("0")
        assert tracker.model_breakdown()[0].model == "unknown"
        assert tracker.model_breakdown()[0].input_tokens == 5000

    def test_summary(self):
        """The summary leads with the dollar total."""
        tracker = CostTracker()
        tracker.record("claude-opus-4", TokenUsage(100_000, 0))
        assert tracker.summary().startswith("$1.5000")
