"""Append-only ledger of evaluator findings.

Recorded findings are never edited. Resolution lives beside them in a
separate ``finding id -> resolving iteration`` map, and ``resolved_view``
produces copies with ``resolved_by`` filled in for reporting and persistence.

A finding from iteration N is resolved by the first later *evaluated*
iteration M > N whose findings no longer contain the same
``(dimension, title)``. Skipped evaluations resolve nothing.
"""

import logging
from typing import Dict, Iterable, List, Tuple

from koi_engine.core.types import Finding, Severity

logger = logging.getLogger(__name__)


class FindingLedger:
    def __init__(self) -> None:
        self._findings: List[Finding] = []
        self._resolved_by: Dict[str, int] = {}

    def record(self, iteration: int, findings: Iterable[Finding]) -> Tuple[Finding, ...]:
        """Append this iteration's findings and resolve earlier ones that vanished."""
        stamped = tuple(
            f if f.iteration == iteration else f.model_copy(update={"iteration": iteration})
            for f in findings
        )
        current_keys = {f.key for f in stamped}

        for earlier in self._findings:
            if earlier.id in self._resolved_by:
                continue
            if earlier.iteration is not None and earlier.iteration >= iteration:
                continue
            if earlier.key not in current_keys:
                self._resolved_by[earlier.id] = iteration
                logger.debug(f"Finding '{earlier.title}' resolved by iteration {iteration}")

        self._findings.extend(stamped)
        return stamped

    def all(self) -> Tuple[Finding, ...]:
        return tuple(self._findings)

    def open_findings(self) -> Tuple[Finding, ...]:
        """Findings not yet resolved by a later iteration."""
        return tuple(f for f in self._findings if f.id not in self._resolved_by)

    def resolved_by(self, finding_id: str) -> int | None:
        return self._resolved_by.get(finding_id)

    def resolved_view(self) -> Tuple[Finding, ...]:
        return tuple(
            f.model_copy(update={"resolved_by": self._resolved_by[f.id]})
            if f.id in self._resolved_by
            else f
            for f in self._findings
        )

    def count_by_severity(self) -> Dict[Severity, int]:
        counts = {severity: 0 for severity in Severity}
        for finding in self._findings:
            counts[finding.severity] += 1
        return counts

    def __len__(self) -> int:
        return len(self._findings)
