"""Decision State Machine.

``decide`` maps one iteration's inputs to exactly one ``IterationDecision``.
Rules are evaluated in a fixed order, first match wins:

1. score >= quality_threshold           -> Stop(QUALITY_MET)
2. index > 1 and score regressed        -> Stop(REGRESSION)
3. no token, time or cost runway left  -> Stop(BUDGET_EXHAUSTED)
4. index >= max_iterations              -> Stop(MAX_ITERATIONS_REACHED)
5. otherwise                            -> Continue

A skipped evaluation (``aggregate_score is None``) cannot meet quality or
regress, so rules 1 and 2 do not apply to it.

The engine lifecycle is a second small union (``AwaitingFirstIteration`` ->
``Iterating(n)`` -> ``Terminated``) driven by ``begin`` and ``advance``. Both unions are
closed; consumers match every variant and end with ``assert_never``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union, assert_never

from koi_engine.core.score_history import ScoreHistory
from koi_engine.core.token_budget import CircuitBreakerState
from koi_engine.core.types import TaskLimits


class StopReason(str, Enum):
    QUALITY_MET = "quality_met"
    BUDGET_EXHAUSTED = "budget_exhausted"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    REGRESSION = "regression"


@dataclass(frozen=True)
class Continue:
    def __str__(self) -> str:
        return "continue"


@dataclass(frozen=True)
class Stop:
    reason: StopReason

    def __str__(self) -> str:
        return f"stop:{self.reason.value}"


IterationDecision = Union[Continue, Stop]


def decide(
    iteration_index: int,
    aggregate_score: Optional[float],
    budget_state: CircuitBreakerState,
    history: Sequence[float],
    limits: TaskLimits,
    regression_epsilon: float = 0.0,
) -> IterationDecision:
    """Pure decision for one completed iteration.

    Args:
        iteration_index: 1-based index of the iteration just completed
        aggregate_score: Capped aggregate, or None if evaluation was skipped
        budget_state: Tracker snapshot including this iteration's cost
        history: Scores evaluated *before* this iteration, oldest first
        limits: The task's limits
        regression_epsilon: Tolerance for the regression rule
    """
    if iteration_index < 1:
        raise ValueError(f"iteration_index must be >= 1, got {iteration_index}")

    if aggregate_score is not None:
        if aggregate_score >= limits.quality_threshold:
            return Stop(StopReason.QUALITY_MET)

        previous = history[-1] if history else None
        if iteration_index > 1 and ScoreHistory.is_regression(
            aggregate_score, previous, regression_epsilon
        ):
            return Stop(StopReason.REGRESSION)

    if budget_state.exhausted:
        return Stop(StopReason.BUDGET_EXHAUSTED)

    if iteration_index >= limits.max_iterations:
        return Stop(StopReason.MAX_ITERATIONS_REACHED)

    return Continue()


def describe_decision(decision: IterationDecision) -> str:
    """Short label for logs and persisted records."""
    if isinstance(decision, Continue):
        return "continue"
    elif isinstance(decision, Stop):
        return decision.reason.value
    else:
        assert_never(decision)


# =============================================================================
# Engine lifecycle
# =============================================================================


@dataclass(frozen=True)
class AwaitingFirstIteration:
    pass


@dataclass(frozen=True)
class Iterating:
    iteration: int


@dataclass(frozen=True)
class Terminated:
    decision: Stop


EngineState = Union[AwaitingFirstIteration, Iterating, Terminated]


def begin(state: EngineState) -> Iterating:
    """Start iteration 1."""
    if isinstance(state, AwaitingFirstIteration):
        return Iterating(1)
    elif isinstance(state, (Iterating, Terminated)):
        raise ValueError(f"cannot begin from {state!r}")
    else:
        assert_never(state)


def advance(state: EngineState, decision: IterationDecision) -> EngineState:
    """Transition after the decision for the iteration in progress."""
    if isinstance(state, Iterating):
        current = state.iteration
    elif isinstance(state, (AwaitingFirstIteration, Terminated)):
        raise ValueError(f"no iteration in progress in {state!r}")
    else:
        assert_never(state)

    if isinstance(decision, Continue):
        return Iterating(current + 1)
    elif isinstance(decision, Stop):
        return Terminated(decision)
    else:
        assert_never(decision)
