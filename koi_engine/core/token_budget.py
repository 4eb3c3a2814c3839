"""Budget Tracker - The Governor.

Per-task accounting of tokens, wall-clock time and USD spend against the task
limits. One tracker belongs to exactly one orchestrator, so there is no
locking here: the orchestrator calls ``record`` once per completed iteration
and reads immutable ``CircuitBreakerState`` snapshots everywhere else.

Counters are strictly monotonic and never rolled back. ``remaining_*`` is
clamped at zero.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from koi_engine.core.types import TaskLimits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CircuitBreakerState:
    """Snapshot of the tracker's running totals.

    Carries the limits as well, so runway questions can be answered from
    the snapshot alone. ``cost_budget_usd`` of None means spend is uncapped.
    """

    token_budget: int
    time_budget_seconds: float
    tokens_used: int = 0
    elapsed_seconds: float = 0.0
    iterations_completed: int = 0
    best_score: Optional[float] = None
    cost_budget_usd: Optional[float] = None
    cost_usd: float = 0.0

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.token_budget - self.tokens_used)

    @property
    def remaining_time(self) -> float:
        return max(0.0, self.time_budget_seconds - self.elapsed_seconds)

    @property
    def remaining_cost(self) -> Optional[float]:
        if self.cost_budget_usd is None:
            return None
        return max(0.0, self.cost_budget_usd - self.cost_usd)

    @property
    def cost_exhausted(self) -> bool:
        return self.cost_budget_usd is not None and self.cost_usd >= self.cost_budget_usd

    @property
    def exhausted(self) -> bool:
        """No runway left for another iteration."""
        return self.remaining_tokens <= 0 or self.remaining_time <= 0.0 or self.cost_exhausted

    @property
    def usage_percent_tokens(self) -> float:
        return self.tokens_used / self.token_budget


class BudgetTracker:
    """Cumulative token/time/cost accounting for a single task."""

    def __init__(
        self,
        token_budget: int,
        time_budget_seconds: float,
        cost_budget_usd: Optional[float] = None,
    ):
        if token_budget <= 0:
            raise ValueError("token_budget must be positive")
        if time_budget_seconds <= 0:
            raise ValueError("time_budget_seconds must be positive")
        if cost_budget_usd is not None and cost_budget_usd <= 0:
            raise ValueError("cost_budget_usd must be positive")
        self._token_budget = token_budget
        self._time_budget = float(time_budget_seconds)
        self._cost_budget = cost_budget_usd
        self._tokens_used = 0
        self._elapsed = 0.0
        self._cost_usd = 0.0
        self._iterations = 0
        self._best_score: Optional[float] = None
        # Largest single-iteration cost seen; the pre-flight estimate.
        self._max_iteration_tokens = 0
        self._max_iteration_seconds = 0.0
        self._max_iteration_usd = 0.0

    @classmethod
    def from_limits(cls, limits: TaskLimits) -> "BudgetTracker":
        return cls(limits.token_budget, limits.time_budget_seconds, limits.max_cost_usd)

    def record(self, tokens_used: int, duration: float, cost_usd: float = 0.0) -> CircuitBreakerState:
        """Add one completed iteration's cost and return the new state.

        Call exactly once per completed iteration.
        """
        if tokens_used < 0:
            raise ValueError(f"tokens_used must be non-negative, got {tokens_used}")
        if duration < 0:
            raise ValueError(f"duration must be non-negative, got {duration}")
        if cost_usd < 0:
            raise ValueError(f"cost_usd must be non-negative, got {cost_usd}")

        self._tokens_used += tokens_used
        self._elapsed += duration
        self._cost_usd += cost_usd
        self._iterations += 1
        self._max_iteration_tokens = max(self._max_iteration_tokens, tokens_used)
        self._max_iteration_seconds = max(self._max_iteration_seconds, duration)
        self._max_iteration_usd = max(self._max_iteration_usd, cost_usd)

        logger.debug(
            f"Recorded iteration {self._iterations}: {tokens_used} tokens, {duration:.2f}s, "
            f"${cost_usd:.4f}. Tokens: {self._tokens_used}/{self._token_budget}, "
            f"Time: {self._elapsed:.1f}/{self._time_budget:.1f}s"
        )
        return self.snapshot()

    def record_score(self, score: float) -> None:
        """Fold an evaluated score into the running best."""
        if self._best_score is None or score > self._best_score:
            self._best_score = score

    def remaining_tokens(self) -> int:
        return max(0, self._token_budget - self._tokens_used)

    def remaining_time(self) -> float:
        return max(0.0, self._time_budget - self._elapsed)

    def would_exceed(
        self,
        estimated_tokens: int,
        estimated_duration: float = 0.0,
        estimated_cost_usd: float = 0.0,
    ) -> bool:
        """Pre-flight check: would spending this much more break a budget?"""
        if self._tokens_used + estimated_tokens > self._token_budget:
            return True
        if self._elapsed + estimated_duration > self._time_budget:
            return True
        if self._cost_budget is None:
            return False
        return self._cost_usd + estimated_cost_usd > self._cost_budget

    def estimate_next_cost(self) -> Tuple[int, float]:
        """Conservative (tokens, seconds) estimate for the next iteration.

        The largest per-iteration cost observed so far; zero before the
        first iteration, so the first iteration always runs.
        """
        return (self._max_iteration_tokens, self._max_iteration_seconds)

    def estimate_next_spend(self) -> float:
        """Largest per-iteration USD spend so far."""
        return self._max_iteration_usd

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            token_budget=self._token_budget,
            time_budget_seconds=self._time_budget,
            tokens_used=self._tokens_used,
            elapsed_seconds=self._elapsed,
            iterations_completed=self._iterations,
            best_score=self._best_score,
            cost_budget_usd=self._cost_budget,
            cost_usd=self._cost_usd,
        )
