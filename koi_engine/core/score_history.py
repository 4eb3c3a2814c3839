"""Ordered record of evaluated aggregate scores.

Skipped evaluations push nothing, so regression checks always compare
against the last *evaluated* score.
"""

from typing import List, Optional, Tuple


class ScoreHistory:
    def __init__(self) -> None:
        self._scores: List[float] = []

    def push(self, score: float) -> None:
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"score must be within [0, 1], got {score}")
        self._scores.append(score)

    def latest(self) -> Optional[float]:
        return self._scores[-1] if self._scores else None

    def previous(self) -> Optional[float]:
        """Score immediately preceding the latest one, if any."""
        return self._scores[-2] if len(self._scores) >= 2 else None

    def best(self) -> Optional[float]:
        return max(self._scores) if self._scores else None

    def snapshot(self) -> Tuple[float, ...]:
        return tuple(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    @staticmethod
    def is_regression(
        current: float, previous: Optional[float], epsilon: float = 0.0
    ) -> bool:
        """``current < previous - epsilon``; never true without a predecessor."""
        if previous is None:
            return False
        return current < previous - epsilon
