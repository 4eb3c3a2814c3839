"""Contracts for the collaborators the engine drives.

Planning, execution, scoring, skill selection and long-term memory all live
outside the engine. The engine only depends on these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol, Sequence, Tuple, runtime_checkable

from koi_engine.core.types import (
    Artifact,
    ExecutionResult,
    Finding,
    IterationCycle,
    Plan,
    ScoreCard,
    Task,
)
from koi_engine.settings import Settings

if TYPE_CHECKING:
    from koi_engine.evaluator.skills import EvaluatorSkill


@dataclass(frozen=True)
class SessionContext:
    """Session-wide configuration, loaded once and passed explicitly."""

    settings: Settings
    session_id: str = "default"


@dataclass(frozen=True)
class IterationContext:
    """What planners and scorers may see about the current iteration."""

    task: Task
    iteration_index: int
    previous_score: Optional[float] = None
    previous_artifact: Optional[Artifact] = None
    open_findings: Tuple[Finding, ...] = field(default_factory=tuple)


@runtime_checkable
class Planner(Protocol):
    async def plan(self, task: Task, context: IterationContext) -> Plan: ...


@runtime_checkable
class Executor(Protocol):
    async def execute(self, plan: Plan) -> ExecutionResult: ...


@runtime_checkable
class Scorer(Protocol):
    dimension: str

    async def score(self, artifact: Artifact, context: IterationContext) -> ScoreCard: ...


@runtime_checkable
class SkillSelector(Protocol):
    def select(self, task: Task) -> "EvaluatorSkill": ...


@runtime_checkable
class MemoryStore(Protocol):
    def record(
        self,
        task: Task,
        cycles: Sequence[IterationCycle],
        findings: Sequence[Finding],
    ) -> None: ...


class PassthroughPlanner:
    """Plans by forwarding the task description plus open findings as feedback."""

    async def plan(self, task: Task, context: IterationContext) -> Plan:
        instructions = task.description
        if context.open_findings:
            notes = "\n".join(
                f"- [{f.severity.value}] {f.title}" + (f": {f.fix}" if f.fix else "")
                for f in context.open_findings
            )
            instructions = f"{instructions}\n\nAddress these findings:\n{notes}"
        return Plan(
            task_id=task.id,
            iteration_index=context.iteration_index,
            instructions=instructions,
            feedback=context.open_findings,
            previous_artifact=context.previous_artifact,
        )
