"""Runs several tasks concurrently, one independent engine each.

Engines share nothing mutable: each gets its own budget tracker, score
history and ledgers. The manager only keeps the engine, its asyncio task and
the terminal outcome, keyed by task id, until ``forget`` drops them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

from koi_engine.core.collaborators import (
    Executor,
    MemoryStore,
    Planner,
    Scorer,
    SessionContext,
    SkillSelector,
)
from koi_engine.core.decision import AwaitingFirstIteration
from koi_engine.core.orchestrator import IterationEngine
from koi_engine.core.types import Task, TaskOutcome, TaskStatus, TaskSubmission
from koi_engine.errors import UnknownTaskError
from koi_engine.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    engine: IterationEngine
    runner: "asyncio.Task[TaskOutcome]"
    outcome: Optional[TaskOutcome] = None


EngineFactory = Callable[[Task], IterationEngine]


class TaskManager:
    """Submit, cancel, await and inspect tasks.

    Either pass collaborators (shared, stateless across tasks) or an
    ``engine_factory`` building a fully configured engine per task.
    """

    def __init__(
        self,
        planner: Optional[Planner] = None,
        executor: Optional[Executor] = None,
        scorers: Sequence[Scorer] = (),
        skill_selector: Optional[SkillSelector] = None,
        memory_store: Optional[MemoryStore] = None,
        session: Optional[SessionContext] = None,
        engine_factory: Optional[EngineFactory] = None,
    ):
        if engine_factory is None and (planner is None or executor is None or skill_selector is None):
            raise ValueError("pass either engine_factory or planner, executor and skill_selector")
        self._session = session or SessionContext(settings=get_settings())
        self._engine_factory = engine_factory or (
            lambda task: IterationEngine(
                task,
                planner,
                executor,
                scorers,
                skill_selector,
                memory_store=memory_store,
                session=self._session,
            )
        )
        self._entries: Dict[str, _Entry] = {}

    def submit(self, submission: Union[TaskSubmission, Mapping[str, Any]]) -> Task:
        """Validate and start a task. Must be called from a running event loop.

        Raises:
            InvalidTaskError: the submission failed validation; nothing started
        """
        if not isinstance(submission, TaskSubmission):
            submission = TaskSubmission.parse(submission)
        task = submission.to_task(
            defaults=self._session.settings.iteration,
            session_id=self._session.session_id,
        )

        engine = self._engine_factory(task)
        runner = asyncio.get_running_loop().create_task(engine.run(), name=f"koi-task-{task.id}")
        entry = _Entry(engine=engine, runner=runner)
        runner.add_done_callback(lambda t: self._on_done(task.id, t))
        self._entries[task.id] = entry
        logger.info(f"Submitted task {task.id}: {task.description[:60]!r}")
        return task

    def cancel(self, task_id: str) -> bool:
        """Request cancellation. Returns False if the task already finished."""
        entry = self._get(task_id)
        if entry.runner.done():
            return False
        entry.engine.cancel()
        return True

    async def wait(self, task_id: str) -> TaskOutcome:
        entry = self._get(task_id)
        entry.outcome = await entry.runner
        return entry.outcome

    async def wait_all(self) -> Dict[str, TaskOutcome]:
        ids = list(self._entries)
        outcomes = await asyncio.gather(*(self._entries[i].runner for i in ids))
        return dict(zip(ids, outcomes))

    def status(self, task_id: str) -> TaskStatus:
        entry = self._get(task_id)
        if entry.outcome is not None:
            return entry.outcome.status
        if isinstance(entry.engine.state, AwaitingFirstIteration):
            return TaskStatus.PENDING
        return TaskStatus.RUNNING

    def outcome(self, task_id: str) -> Optional[TaskOutcome]:
        return self._get(task_id).outcome

    def forget(self, task_id: str) -> TaskOutcome:
        """Drop a finished task, its engine and cycles, and return its outcome.

        Raises:
            UnknownTaskError: no such task
            RuntimeError: the task is still running
        """
        entry = self._get(task_id)
        if not entry.runner.done():
            raise RuntimeError(f"Task {task_id} is still running")
        del self._entries[task_id]
        return entry.outcome if entry.outcome is not None else entry.runner.result()

    def task_ids(self) -> list[str]:
        return list(self._entries)

    def _get(self, task_id: str) -> _Entry:
        try:
            return self._entries[task_id]
        except KeyError:
            raise UnknownTaskError(task_id) from None

    def _on_done(self, task_id: str, runner: "asyncio.Task[TaskOutcome]") -> None:
        entry = self._entries.get(task_id)
        if entry is None or runner.cancelled():
            return
        error = runner.exception()
        if error is not None:
            logger.error(f"Task {task_id} crashed: {error}")
            return
        entry.outcome = runner.result()
