"""Task state files for external monitoring.

Each running task has its own ``tasks/<task_id>.json``, rewritten at every
lifecycle transition and removed when that task finishes, so concurrent
tasks never touch each other's file. Finished tasks are appended to
``task-history.jsonl``, which is rotated down to its last 500 lines once it
reaches 1000 lines or 1 MB.

Every write of a whole file goes through ``atomic_write_text``: a temp file
in the same directory, flushed and fsynced, then ``os.replace`` onto the
target, so readers never observe a partial file.

Writers raise ``PersistenceError``; the orchestrator downgrades those to
warnings.
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from koi_engine.errors import PersistenceError
from koi_engine.settings import PathSettings

logger = logging.getLogger(__name__)

HISTORY_MAX_LINES = 1000
HISTORY_MAX_BYTES = 1_048_576
HISTORY_KEEP_LINES = 500


class TaskState(BaseModel):
    """Snapshot written to ``tasks/<task_id>.json``."""

    task_id: str
    description: str
    status: str = "pending"
    phase: str = "plan"
    iteration: int = 0
    max_iterations: int = 0
    current_score: Optional[float] = None
    best_score: Optional[float] = None
    tokens_used: int = 0
    token_budget: int = 0
    cost_usd: float = 0.0
    started_at: datetime
    elapsed_secs: float = 0.0
    last_decision: str = "pending"


class TaskHistoryEntry(BaseModel):
    """One line of ``task-history.jsonl``."""

    task_id: str
    description: str
    status: str
    reason: str
    iterations: int
    total_tokens: int
    cost_usd: float
    final_score: Optional[float] = None
    best_score: Optional[float] = None
    completed_at: datetime


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` without exposing a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as f:
        temp_path = f.name
        try:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        except BaseException:
            f.close()
            os.unlink(temp_path)
            raise
    os.replace(temp_path, path)


class TaskStateWriter:
    """Writes the state files under one state directory."""

    def __init__(self, paths: Optional[PathSettings] = None, state_dir: Optional[Path] = None):
        if state_dir is not None:
            self.tasks_dir = state_dir / "tasks"
            self.history_file = state_dir / "task-history.jsonl"
        else:
            paths = paths or PathSettings()
            self.tasks_dir = paths.tasks_dir
            self.history_file = paths.task_history_file

    def task_file(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}.json"

    def write_current(self, state: TaskState) -> None:
        path = self.task_file(state.task_id)
        try:
            atomic_write_text(path, state.model_dump_json(indent=2))
        except OSError as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e

    def clear_current(self, task_id: str) -> None:
        """Remove one task's live state file; other tasks are untouched."""
        path = self.task_file(task_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Could not remove {path}: {e}") from e

    def append_history(self, entry: TaskHistoryEntry) -> None:
        try:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            if self._needs_rotation():
                self._rotate()
            with self.history_file.open("a", encoding="utf-8") as f:
                f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            raise PersistenceError(f"Could not append to {self.history_file}: {e}") from e

    def complete(self, entry: TaskHistoryEntry) -> None:
        """Record a finished task and drop the live state file."""
        self.append_history(entry)
        self.clear_current(entry.task_id)

    def _needs_rotation(self) -> bool:
        if not self.history_file.exists():
            return False
        if self.history_file.stat().st_size >= HISTORY_MAX_BYTES:
            return True
        with self.history_file.open("r", encoding="utf-8") as f:
            line_count = sum(1 for _ in f)
        return line_count >= HISTORY_MAX_LINES

    def _rotate(self) -> None:
        lines = self.history_file.read_text(encoding="utf-8").splitlines()
        kept = lines[-HISTORY_KEEP_LINES:]
        logger.info(f"Rotating {self.history_file.name}: keeping {len(kept)} of {len(lines)} lines")
        atomic_write_text(self.history_file, "\n".join(kept) + "\n" if kept else "")


# =============================================================================
# Readers
# =============================================================================


def read_current_task(path: Path) -> Optional[TaskState]:
    """One task's live state, or None if absent or unreadable."""
    try:
        return TaskState.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable task state {path}: {e}")
        return None


def read_running_tasks(tasks_dir: Optional[Path] = None) -> List[TaskState]:
    """Every running task's live state, oldest start first."""
    tasks_dir = tasks_dir or PathSettings().tasks_dir
    try:
        paths = sorted(tasks_dir.glob("*.json"))
    except OSError as e:
        logger.warning(f"Could not list running tasks in {tasks_dir}: {e}")
        return []

    states = [state for state in map(read_current_task, paths) if state is not None]
    return sorted(states, key=lambda state: state.started_at)


def read_history(limit: int = 20, path: Optional[Path] = None) -> List[TaskHistoryEntry]:
    """Last ``limit`` history entries, oldest first. Corrupt lines are skipped."""
    path = path or PathSettings().task_history_file
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"Could not read task history {path}: {e}")
        return []

    entries: List[TaskHistoryEntry] = []
    for line in lines[-limit:] if limit > 0 else []:
        if not line.strip():
            continue
        try:
            entries.append(TaskHistoryEntry.model_validate_json(line))
        except ValidationError:
            logger.debug(f"Skipping corrupt history line in {path}")
    return entries


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
