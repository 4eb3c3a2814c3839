"""Scripted collaborators shared by the engine tests."""

import asyncio
from typing import List, Optional, Sequence, Tuple, Union

from koi_engine.core.collaborators import IterationContext, PassthroughPlanner, SessionContext
from koi_engine.core.types import (
    Artifact,
    ExecutionResult,
    Finding,
    IterationCycle,
    Plan,
    ScoreCard,
    Task,
    TaskLimits,
    TokenUsage,
)
from koi_engine.evaluator.skills import DimensionDef, EvaluatorSkill
from koi_engine.settings import IterationSettings, RetrySettings, Settings

Step = Union[Tuple[str, int], BaseException]
ScoreStep = Union[float, ScoreCard, BaseException]


def make_task(**limits) -> Task:
    return Task(description="write a haiku about koi", limits=TaskLimits(**limits))


def fast_session(**iteration) -> SessionContext:
    """Settings with zero retry delays so retry tests never sleep."""
    settings = Settings(
        iteration=IterationSettings(**iteration),
        retry=RetrySettings(
            executor_max_attempts=3,
            scorer_max_attempts=3,
            initial_delay_seconds=0.0,
            jitter_fraction=0.0,
        ),
    )
    return SessionContext(settings=settings, session_id="test-session")


def single_skill(*dimensions: Tuple[str, float]) -> EvaluatorSkill:
    dims = dimensions or (("quality", 1.0),)
    return EvaluatorSkill(
        name="test-skill",
        dimensions=tuple(DimensionDef(name=n, weight=w) for n, w in dims),
    )


class ScriptedExecutor:
    """Plays back (content, tokens) steps; exceptions in the script are raised."""

    def __init__(self, steps: Sequence[Step], model: Optional[str] = None):
        self.steps = list(steps)
        self.model = model
        self.calls = 0
        self.plans: List[Plan] = []

    async def execute(self, plan: Plan) -> ExecutionResult:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        self.plans.append(plan)
        if isinstance(step, BaseException):
            raise step
        content, tokens = step
        return ExecutionResult(
            artifact=Artifact(content=content),
            usage=TokenUsage(input_tokens=tokens),
            model=self.model,
        )


class BlockingExecutor:
    """Never finishes on its own; records whether it was cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def execute(self, plan: Plan) -> ExecutionResult:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("unreachable")


class ScriptedScorer:
    def __init__(self, dimension: str, steps: Sequence[ScoreStep]):
        self.dimension = dimension
        self.steps = list(steps)
        self.calls = 0

    async def score(self, artifact: Artifact, context: IterationContext) -> ScoreCard:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, ScoreCard):
            return step
        return ScoreCard(score=step)


class FixedSkillSelector:
    def __init__(self, skill: EvaluatorSkill):
        self.skill = skill

    def select(self, task: Task) -> EvaluatorSkill:
        return self.skill


class RecordingMemoryStore:
    def __init__(self) -> None:
        self.records: List[Tuple[Task, Tuple[IterationCycle, ...], Tuple[Finding, ...]]] = []

    def record(self, task, cycles, findings) -> None:
        self.records.append((task, tuple(cycles), tuple(findings)))


class FailingMemoryStore:
    def record(self, task, cycles, findings) -> None:
        raise OSError("disk full")


def build_engine(executor, scorers, skill=None, session=None, memory_store=None, task=None, **limits):
    from koi_engine.core.orchestrator import IterationEngine

    return IterationEngine(
        task or make_task(**limits),
        PassthroughPlanner(),
        executor,
        scorers,
        FixedSkillSelector(skill or single_skill()),
        memory_store=memory_store,
        session=session or fast_session(),
    )
