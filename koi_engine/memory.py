"""Append-only JSONL memory of finished tasks.

One line per task: the task id and description, one record per iteration
and one per finding (with the iteration that resolved it, if any).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from koi_engine.core.decision import describe_decision
from koi_engine.core.types import Finding, IterationCycle, Task
from koi_engine.errors import PersistenceError
from koi_engine.settings import PathSettings

logger = logging.getLogger(__name__)


def iteration_record(cycle: IterationCycle) -> Dict[str, Any]:
    return {
        "index": cycle.index,
        "score": cycle.aggregate_score,
        "decision": describe_decision(cycle.decision),
        "input_tokens": cycle.usage.input_tokens,
        "output_tokens": cycle.usage.output_tokens,
        "duration": round(cycle.duration, 3),
        "timestamp": cycle.created_at.isoformat(),
    }


def finding_record(finding: Finding) -> Dict[str, Any]:
    return {
        "id": finding.id,
        "iteration": finding.iteration,
        "severity": finding.severity.value,
        "dimension": finding.dimension,
        "title": finding.title,
        "description": finding.description,
        "location": finding.location,
        "fix": finding.fix,
        "resolved_by": finding.resolved_by,
    }


class JsonlMemoryStore:
    """Memory store backed by a single JSONL file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or PathSettings().memory_file

    def record(
        self,
        task: Task,
        cycles: Sequence[IterationCycle],
        findings: Sequence[Finding],
    ) -> None:
        record = {
            "task_id": task.id,
            "session_id": task.session_id,
            "description": task.description,
            "category": task.category,
            "iterations": [iteration_record(c) for c in cycles],
            "findings": [finding_record(f) for f in findings],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            raise PersistenceError(f"Could not append to {self.path}: {e}") from e
        logger.debug(f"Recorded task {task.id} ({len(cycles)} iterations) in {self.path}")

    def load(self, task_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """All records, or those for one task id. Corrupt lines are skipped."""
        if not self.path.exists():
            return []
        records = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"Skipping corrupt memory line in {self.path}")
                continue
            if task_id is None or record.get("task_id") == task_id:
                records.append(record)
        return records
