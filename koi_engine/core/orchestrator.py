"""Iteration Engine - drives one task through plan, execute, evaluate, decide.

One engine owns one task. Iterations run strictly in sequence: iteration
n+1 never starts before iteration n's decision is recorded. The engine is the
only owner of the mutable per-task state (budget tracker, score history,
finding ledger, cost tracker, cycle list); every collaborator receives
immutable snapshots.

Per iteration:

1. honour cancellation
2. pre-flight ``would_exceed`` with the largest iteration tokens, time and
   spend seen so far, stopping with BUDGET_EXHAUSTED without executing
3. plan and execute (retried on transient errors, cancellable in flight)
4. ``should_evaluate`` gate, then the Evaluation Aggregator
5. update budget tracker and score history, ``decide``, seal the cycle
6. loop on Continue, otherwise terminate

Terminal outcomes are STOPPED (with a StopReason), FAILED (fatal error) or
CANCELLED. They are persisted to the memory store and the state files;
persistence failures are logged as warnings and never change the outcome.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar, assert_never

from koi_engine.core.collaborators import (
    Executor,
    IterationContext,
    MemoryStore,
    Planner,
    Scorer,
    SessionContext,
    SkillSelector,
)
from koi_engine.core.cost import CostTracker
from koi_engine.core.decision import (
    AwaitingFirstIteration,
    Continue,
    EngineState,
    Stop,
    StopReason,
    advance,
    begin,
    decide,
    describe_decision,
)
from koi_engine.core.eval_gate import should_evaluate
from koi_engine.core.findings import FindingLedger
from koi_engine.core.retry import retry_async
from koi_engine.core.score_history import ScoreHistory
from koi_engine.core.state import TaskHistoryEntry, TaskState, TaskStateWriter, utcnow
from koi_engine.core.token_budget import BudgetTracker
from koi_engine.core.types import (
    Artifact,
    EvaluationResult,
    IterationCycle,
    Task,
    TaskOutcome,
    TaskStatus,
    TokenUsage,
)
from koi_engine.errors import KoiEngineError
from koi_engine.evaluator.aggregator import EvaluationAggregator
from koi_engine.evaluator.skills import EvaluatorSkill
from koi_engine.evaluator.utils import compute_diff_ratio
from koi_engine.observability import log_decision, span
from koi_engine.report import format_outcome
from koi_engine.settings import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IterationEngine:
    """Runs a single task to a terminal outcome."""

    def __init__(
        self,
        task: Task,
        planner: Planner,
        executor: Executor,
        scorers: Sequence[Scorer],
        skill_selector: SkillSelector,
        memory_store: Optional[MemoryStore] = None,
        session: Optional[SessionContext] = None,
        state_writer: Optional[TaskStateWriter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.task = task
        self._planner = planner
        self._executor = executor
        self._skill_selector = skill_selector
        self._memory_store = memory_store
        self._settings: Settings = session.settings if session else get_settings()
        self._state_writer = state_writer or TaskStateWriter(self._settings.paths)
        self._clock = clock

        self._cancel_event = asyncio.Event()
        self._aggregator = EvaluationAggregator(
            scorers,
            retry_policy=self._settings.retry.scorer_policy(),
            scorer_timeout=self._settings.evaluation.scorer_timeout_seconds,
            blocker_score_cap=self._settings.iteration.blocker_score_cap,
            cancel_event=self._cancel_event,
        )

        self._budget = BudgetTracker.from_limits(task.limits)
        self._history = ScoreHistory()
        self._ledger = FindingLedger()
        self._cost = CostTracker()
        self._cycles: List[IterationCycle] = []
        self._state: EngineState = AwaitingFirstIteration()
        self._best_artifact: Optional[Artifact] = None
        self._best_score: Optional[float] = None
        self._last_artifact: Optional[Artifact] = None
        self._started_at = 0.0
        self._started_wall = utcnow()

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def cycles(self) -> List[IterationCycle]:
        return list(self._cycles)

    def cancel(self) -> None:
        """Request cancellation; honoured at the next boundary or in flight."""
        if not self._cancel_event.is_set():
            logger.info(f"Cancellation requested for task {self.task.id}")
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self) -> TaskOutcome:
        if not isinstance(self._state, AwaitingFirstIteration):
            raise RuntimeError(f"Task {self.task.id} has already been run")

        self._started_at = self._clock()
        self._started_wall = utcnow()
        logger.info(
            f"Starting task {self.task.id}: max {self.task.limits.max_iterations} iterations, "
            f"threshold {self.task.limits.quality_threshold}, "
            f"{self.task.limits.token_budget} tokens, {self.task.limits.time_budget_seconds}s, "
            f"${self.task.limits.max_cost_usd:.2f}"
        )

        with span("task {task_id}", task_id=self.task.id, category=self.task.category):
            try:
                skill = self._skill_selector.select(self.task)
                self._aggregator.check_skill(skill)
                outcome = await self._loop(skill)
            except asyncio.CancelledError:
                if not self._cancel_event.is_set():
                    raise
                outcome = self._outcome(TaskStatus.CANCELLED)
            except KoiEngineError as e:
                logger.error(f"Task {self.task.id} failed: {e}")
                outcome = self._outcome(TaskStatus.FAILED, error=str(e))
            except Exception as e:
                logger.exception(f"Task {self.task.id} failed with an unexpected error")
                outcome = self._outcome(TaskStatus.FAILED, error=f"{type(e).__name__}: {e}")

        self._persist(outcome)
        logger.info(format_outcome(outcome))
        logger.debug(
            f"Task {self.task.id} spend {self._cost.summary()}: "
            + ", ".join(f"{phase} ${cost:.4f}" for phase, cost in self._cost.phase_breakdown())
            + "; "
            + ", ".join(f"{m.model} x{m.calls} ${m.cost_usd:.4f}" for m in self._cost.model_breakdown())
        )
        return outcome

    # =========================================================================
    # Loop
    # =========================================================================

    async def _loop(self, skill: EvaluatorSkill) -> TaskOutcome:
        state = begin(self._state)
        self._state = state
        limits = self.task.limits
        retry_policy = self._settings.retry.executor_policy()

        while True:
            index = state.iteration

            if self._cancel_event.is_set():
                return self._outcome(TaskStatus.CANCELLED)

            est_tokens, est_seconds = self._budget.estimate_next_cost()
            est_usd = self._budget.estimate_next_spend()
            if self._budget.would_exceed(est_tokens, est_seconds, est_usd):
                logger.info(
                    f"Iteration {index} would exceed the budget "
                    f"(estimated {est_tokens} tokens, {est_seconds:.1f}s, ${est_usd:.4f}); stopping"
                )
                self._state = advance(state, Stop(StopReason.BUDGET_EXHAUSTED))
                return self._outcome(TaskStatus.STOPPED, StopReason.BUDGET_EXHAUSTED)

            with span("iteration {index}", task_id=self.task.id, index=index):
                iteration_start = self._clock()
                spent_before = self._cost.total_usd
                context = IterationContext(
                    task=self.task,
                    iteration_index=index,
                    previous_score=self._history.latest(),
                    previous_artifact=self._last_artifact,
                    open_findings=self._ledger.open_findings(),
                )

                self._checkpoint(index, "plan")
                plan = await self._cancellable(
                    retry_async(
                        lambda: self._planner.plan(self.task, context),
                        retry_policy,
                        name="plan",
                        cancel_event=self._cancel_event,
                    )
                )

                self._checkpoint(index, "execute")
                result = await self._cancellable(
                    retry_async(
                        lambda: self._executor.execute(plan),
                        retry_policy,
                        name="execute",
                        cancel_event=self._cancel_event,
                    )
                )
                self._cost.record(result.model, result.usage, phase="execute")
                artifact = result.artifact
                if self._last_artifact is not None:
                    ratio = compute_diff_ratio(self._last_artifact.content, artifact.content)
                    logger.debug(f"Iteration {index} changed {ratio:.0%} of lines")

                evaluation: Optional[EvaluationResult] = None
                if should_evaluate(
                    artifact,
                    self._last_artifact,
                    index,
                    skip_identical=self._settings.evaluation.skip_identical_artifacts,
                ):
                    self._checkpoint(index, "evaluate")
                    evaluation = await self._cancellable(
                        self._aggregator.evaluate(artifact, skill, context)
                    )
                    for dimension in evaluation.dimensions:
                        if dimension.usage.total:
                            self._cost.record(dimension.model, dimension.usage, phase="evaluate")
                    self._ledger.record(index, evaluation.findings)
                else:
                    logger.info(f"Iteration {index} produced no change; skipping evaluation")

                score = evaluation.aggregate if evaluation is not None else None
                usage = result.usage + (evaluation.usage if evaluation else TokenUsage())
                duration = self._clock() - iteration_start

                self._budget.record(usage.total, duration, float(self._cost.total_usd - spent_before))
                if score is not None:
                    self._budget.record_score(score)
                decision = decide(
                    index,
                    score,
                    self._budget.snapshot(),
                    self._history.snapshot(),
                    limits,
                    self._settings.iteration.regression_epsilon,
                )
                if score is not None:
                    self._history.push(score)
                    if self._best_score is None or score > self._best_score:
                        self._best_score = score
                        self._best_artifact = artifact
                self._last_artifact = artifact

                self._cycles.append(
                    IterationCycle(
                        index=index,
                        artifact=artifact,
                        aggregate_score=score,
                        decision=decision,
                        usage=usage,
                        duration=duration,
                        evaluation=evaluation,
                    )
                )
                label = describe_decision(decision)
                log_decision(self.task.id, index, label, score)
                logger.info(
                    f"Iteration {index}: score="
                    f"{'skipped' if score is None else f'{score:.3f}'}, "
                    f"{usage.total} tokens, {duration:.2f}s -> {label}"
                )

            state = advance(state, decision)
            self._state = state
            self._checkpoint(index, "decide", last_decision=label)

            if isinstance(decision, Stop):
                return self._outcome(TaskStatus.STOPPED, decision.reason)
            elif isinstance(decision, Continue):
                continue
            else:
                assert_never(decision)

    async def _cancellable(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation is requested first."""
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise asyncio.CancelledError(f"task {self.task.id} cancelled in flight")

    # =========================================================================
    # Outcome and persistence
    # =========================================================================

    def _outcome(
        self,
        status: TaskStatus,
        stop_reason: Optional[StopReason] = None,
        error: Optional[str] = None,
    ) -> TaskOutcome:
        best_artifact = self._best_artifact or self._last_artifact
        return TaskOutcome(
            task=self.task,
            status=status,
            stop_reason=stop_reason,
            error=error,
            cycles=tuple(self._cycles),
            findings=self._ledger.resolved_view(),
            best_artifact=best_artifact,
            best_score=self._history.best(),
            final_score=self._history.latest(),
            total_tokens=self._budget.snapshot().tokens_used,
            elapsed_seconds=self._clock() - self._started_at,
            cost_usd=float(self._cost.total_usd),
        )

    def _checkpoint(self, iteration: int, phase: str, last_decision: Optional[str] = None) -> None:
        snapshot = self._budget.snapshot()
        state = TaskState(
            task_id=self.task.id,
            description=self.task.description,
            status="running",
            phase=phase,
            iteration=iteration,
            max_iterations=self.task.limits.max_iterations,
            current_score=self._history.latest(),
            best_score=self._history.best(),
            tokens_used=snapshot.tokens_used,
            token_budget=snapshot.token_budget,
            cost_usd=float(self._cost.total_usd),
            started_at=self._started_wall,
            elapsed_secs=self._clock() - self._started_at,
            last_decision=last_decision or (
                describe_decision(self._cycles[-1].decision) if self._cycles else "pending"
            ),
        )
        self._safely("write task state", lambda: self._state_writer.write_current(state))

    def _persist(self, outcome: TaskOutcome) -> None:
        if self._memory_store is not None:
            memory_store = self._memory_store
            self._safely(
                "record task in memory",
                lambda: memory_store.record(self.task, outcome.cycles, outcome.findings),
            )

        entry = TaskHistoryEntry(
            task_id=self.task.id,
            description=self.task.description,
            status=outcome.status.value,
            reason=outcome.reason,
            iterations=outcome.iterations_completed,
            total_tokens=outcome.total_tokens,
            cost_usd=outcome.cost_usd,
            final_score=outcome.final_score,
            best_score=outcome.best_score,
            completed_at=utcnow(),
        )
        self._safely("append task history", lambda: self._state_writer.complete(entry))

    def _safely(self, action: str, write: Callable[[], None]) -> None:
        try:
            write()
        except Exception as e:
            logger.warning(f"Could not {action} for task {self.task.id}: {e}")

