"""Iteration core.

This package provides:
- BudgetTracker: Per-task token and wall-clock accounting
- ScoreHistory: Evaluated scores and the regression rule
- decide: The pure decision state machine
- RetryPolicy / retry_async: Bounded backoff with jitter
- FindingLedger: Append-only findings with resolution tracking
- CostTracker: USD spend per model and phase
- IterationEngine / TaskManager: see ``orchestrator`` and ``task_manager``
"""

from .token_budget import BudgetTracker, CircuitBreakerState
from .score_history import ScoreHistory
from .decision import (
    AwaitingFirstIteration,
    Continue,
    IterationDecision,
    Iterating,
    Stop,
    StopReason,
    Terminated,
    advance,
    begin,
    decide,
)
from .retry import RetryPolicy, retry_async
from .findings import FindingLedger
from .cost import CostTracker

__all__ = [
    "BudgetTracker",
    "CircuitBreakerState",
    "ScoreHistory",
    "AwaitingFirstIteration",
    "Continue",
    "IterationDecision",
    "Iterating",
    "Stop",
    "StopReason",
    "Terminated",
    "advance",
    "begin",
    "decide",
    "RetryPolicy",
    "retry_async",
    "FindingLedger",
    "CostTracker",
]
