"""Core data model for the iteration engine.

Everything here is immutable once built. The orchestrator owns the only
mutable state (budget tracker, score history, ledgers) and hands snapshots of
these types to every other component.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from koi_engine.errors import InvalidTaskError

if TYPE_CHECKING:
    from koi_engine.core.decision import IterationDecision, StopReason
    from koi_engine.settings import IterationSettings


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Task
# =============================================================================


class TaskLimits(BaseModel):
    """Resource and quality limits for one task."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=3, ge=1)
    quality_threshold: float = Field(default=0.8, ge=0.0, le=1.0, allow_inf_nan=False)
    token_budget: int = Field(default=200_000, gt=0)
    time_budget_seconds: float = Field(default=300.0, gt=0.0, allow_inf_nan=False)
    max_cost_usd: float = Field(default=2.0, gt=0.0, allow_inf_nan=False)


class Task(BaseModel):
    """A submitted unit of work. Read-only for the lifetime of the run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    description: str = Field(min_length=1)
    category: str = "general"
    session_id: str = Field(default_factory=_new_id)
    limits: TaskLimits = Field(default_factory=TaskLimits)
    created_at: datetime = Field(default_factory=_utcnow)


class TaskSubmission(BaseModel):
    """Boundary payload for submitting a task.

    Omitted limits fall back to the session's ``IterationSettings``
    (3 iterations, 0.8 threshold, 200k tokens, 300 seconds, $2.00 by default).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str
    category: str = "general"
    max_iterations: Optional[int] = None
    quality_threshold: Optional[float] = None
    token_budget: Optional[int] = None
    time_budget_seconds: Optional[float] = None
    max_cost_usd: Optional[float] = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description must not be empty")
        return value

    @classmethod
    def parse(cls, payload: Mapping[str, Any]) -> "TaskSubmission":
        """Validate a raw payload, raising InvalidTaskError on bad input."""
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as e:
            raise InvalidTaskError(_describe_validation_error(e)) from e

    def to_task(
        self,
        defaults: Optional["IterationSettings"] = None,
        session_id: Optional[str] = None,
    ) -> Task:
        """Build the immutable Task, validating every limit."""
        limit_values: Dict[str, Any] = {}
        for name in TaskLimits.model_fields:
            value = getattr(self, name)
            if value is None and defaults is not None:
                value = getattr(defaults, name)
            if value is not None:
                limit_values[name] = value

        try:
            limits = TaskLimits(**limit_values)
        except ValidationError as e:
            raise InvalidTaskError(_describe_validation_error(e)) from e

        task_kwargs: Dict[str, Any] = {
            "description": self.description,
            "category": self.category or "general",
            "limits": limits,
        }
        if session_id:
            task_kwargs["session_id"] = session_id
        return Task(**task_kwargs)


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "payload"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "Invalid task submission: " + "; ".join(parts)


# =============================================================================
# Tokens, artifacts, plans
# =============================================================================


@dataclass(frozen=True)
class TokenUsage:
    """Input/output token counts for one call or one iteration."""

    input_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self) -> None:
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError("token counts must be non-negative")

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class Artifact:
    """Output of one execution.

    ``diff`` is the change relative to the previous iteration when the
    executor can compute one; ``None`` means unknown, ``""`` means no change.
    """

    content: str
    diff: Optional[str] = None
    kind: str = "text"

    def fingerprint(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Plan:
    """What the executor should do for one iteration."""

    task_id: str
    iteration_index: int
    instructions: str
    feedback: Tuple["Finding", ...] = ()
    previous_artifact: Optional[Artifact] = None


@dataclass(frozen=True)
class ExecutionResult:
    artifact: Artifact
    usage: TokenUsage = field(default_factory=TokenUsage)
    duration: float = 0.0
    model: Optional[str] = None


# =============================================================================
# Findings and evaluation results
# =============================================================================


class Severity(str, Enum):
    SUGGESTION = "suggestion"
    IMPORTANT = "important"
    BLOCKER = "blocker"


class Finding(BaseModel):
    """One evaluator observation. Never edited once recorded."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    severity: Severity
    dimension: str
    title: str
    description: str = ""
    location: Optional[str] = None
    fix: Optional[str] = None
    iteration: Optional[int] = None
    resolved_by: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Identity used to match the same issue across iterations."""
        return (self.dimension, self.title.strip().lower())


@dataclass(frozen=True)
class ScoreCard:
    """What a single scorer returns for one dimension."""

    score: float
    findings: Tuple[Finding, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None


@dataclass(frozen=True)
class DimensionScore:
    dimension: str
    weight: float
    score: float
    degraded: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None

    @property
    def weighted(self) -> float:
        return self.weight * self.score


@dataclass(frozen=True)
class EvaluationResult:
    """Aggregated evaluation of one artifact."""

    aggregate: float
    raw_score: float
    dimensions: Tuple[DimensionScore, ...]
    findings: Tuple[Finding, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    suggestion: str = ""

    @property
    def capped(self) -> bool:
        return self.aggregate < self.raw_score

    @property
    def has_blocker(self) -> bool:
        return any(f.severity is Severity.BLOCKER for f in self.findings)

    def scores_by_dimension(self) -> Dict[str, float]:
        return {d.dimension: d.score for d in self.dimensions}


# =============================================================================
# Iterations and outcomes
# =============================================================================


@dataclass(frozen=True)
class IterationCycle:
    """One sealed plan-execute-evaluate-decide attempt."""

    index: int
    artifact: Artifact
    aggregate_score: Optional[float]
    decision: "IterationDecision"
    usage: TokenUsage
    duration: float
    created_at: datetime = field(default_factory=_utcnow)
    evaluation: Optional[EvaluationResult] = None

    @property
    def evaluated(self) -> bool:
        return self.aggregate_score is not None


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.STOPPED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass(frozen=True)
class TaskOutcome:
    """Terminal result of a task, always carrying the reason it ended."""

    task: Task
    status: TaskStatus
    stop_reason: Optional["StopReason"] = None
    error: Optional[str] = None
    cycles: Tuple[IterationCycle, ...] = ()
    findings: Tuple[Finding, ...] = ()
    best_artifact: Optional[Artifact] = None
    best_score: Optional[float] = None
    final_score: Optional[float] = None
    total_tokens: int = 0
    elapsed_seconds: float = 0.0
    cost_usd: float = 0.0

    @property
    def iterations_completed(self) -> int:
        return len(self.cycles)

    @property
    def reason(self) -> str:
        """Human-readable trigger for the terminal state."""
        if self.status is TaskStatus.STOPPED and self.stop_reason is not None:
            return self.stop_reason.value
        if self.status is TaskStatus.FAILED:
            return f"failed: {self.error or 'unknown error'}"
        if self.status is TaskStatus.CANCELLED:
            return "cancelled"
        return self.status.value

