"""USD cost tracking for executor and judge calls.

Prices are per million tokens (input, output). Matching is by substring on
the lowercased model name, most specific first. Local/open-weight models are
free; unknown models get a conservative default.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from koi_engine.core.types import TokenUsage

logger = logging.getLogger(__name__)

_MILLION = Decimal(1_000_000)

# Ordered: first substring match wins.
MODEL_PRICING: List[Tuple[str, Tuple[str, str]]] = [
    ("claude-opus", ("15.0", "75.0")),
    ("claude-sonnet", ("3.0", "15.0")),
    ("haiku", ("0.8", "4.0")),
    ("gpt-4.1-mini", ("0.4", "1.6")),
    ("gpt-4.1", ("2.0", "8.0")),
    ("gpt-4o-mini", ("0.15", "0.6")),
    ("gpt-4o", ("2.5", "10.0")),
    ("o3-mini", ("1.1", "4.4")),
    ("o4-mini", ("1.1", "4.4")),
    ("o3", ("10.0", "40.0")),
    ("gemini-2.5-pro", ("1.25", "10.0")),
    ("gemini-2.5-flash", ("0.15", "0.6")),
    ("gemini-2.0-flash", ("0.1", "0.4")),
]

LOCAL_MODEL_MARKERS = ("llama", "mistral", "gemma", "qwen", "codestral", "deepseek")

DEFAULT_PRICING = (Decimal("1.0"), Decimal("3.0"))


def model_pricing(model: str) -> Tuple[Decimal, Decimal]:
    """(input, output) USD per million tokens for ``model``."""
    name = model.lower()
    for marker, (input_price, output_price) in MODEL_PRICING:
        if marker in name:
            return Decimal(input_price), Decimal(output_price)
    if any(marker in name for marker in LOCAL_MODEL_MARKERS):
        return Decimal("0"), Decimal("0")
    return DEFAULT_PRICING


def calculate_cost(model: str, usage: TokenUsage) -> Decimal:
    input_price, output_price = model_pricing(model)
    return (
        Decimal(usage.input_tokens) / _MILLION * input_price
        + Decimal(usage.output_tokens) / _MILLION * output_price
    )


@dataclass
class ModelCost:
    model: str
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: Decimal = Decimal("0")


class CostTracker:
    """Accumulates spend per model and per phase (execute / evaluate)."""

    def __init__(self) -> None:
        self._by_model: Dict[str, ModelCost] = {}
        self._by_phase: Dict[str, Decimal] = {}
        self._total = Decimal("0")

    def record(self, model: Optional[str], usage: TokenUsage, phase: str = "execute") -> Decimal:
        """Record one call. Calls with no model name are counted but free."""
        cost = calculate_cost(model, usage) if model else Decimal("0")
        entry = self._by_model.setdefault(model or "unknown", ModelCost(model or "unknown"))
        entry.calls += 1
        entry.input_tokens += usage.input_tokens
        entry.output_tokens += usage.output_tokens
        entry.cost_usd += cost
        self._by_phase[phase] = self._by_phase.get(phase, Decimal("0")) + cost
        self._total += cost
        return cost

    @property
    def total_usd(self) -> Decimal:
        return self._total

    def phase_breakdown(self) -> List[Tuple[str, Decimal]]:
        return sorted(self._by_phase.items(), key=lambda item: item[1], reverse=True)

    def model_breakdown(self) -> List[ModelCost]:
        return sorted(self._by_model.values(), key=lambda entry: entry.cost_usd, reverse=True)

    def summary(self) -> str:
        return f"${self._total:.4f} total ({len(self._by_model)} models)"
