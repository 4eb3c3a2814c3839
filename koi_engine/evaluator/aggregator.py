"""Evaluation Aggregator.

Runs every scorer named by the active evaluator skill concurrently and folds
their cards into one ``EvaluationResult``:

1. The skill's weights must sum to 1.0 and every dimension needs a scorer,
   otherwise ``SkillConfigurationError``.
2. Each scorer runs under a per-attempt timeout and bounded retry. Transient
   failures are retried; permanent failures and exhausted retries degrade
   the dimension to 0.0 plus a Blocker "Scorer unavailable" finding, without
   touching the other dimensions.
3. aggregate = sum(weight * score), capped at ``blocker_score_cap`` when any
   Blocker finding is present. Important findings never cap.
"""

import asyncio
import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from koi_engine.core.collaborators import IterationContext, Scorer
from koi_engine.core.retry import NO_RETRY, RetryPolicy, retry_async
from koi_engine.core.types import (
    Artifact,
    DimensionScore,
    EvaluationResult,
    Finding,
    ScoreCard,
    Severity,
    TokenUsage,
)
from koi_engine.errors import SkillConfigurationError
from koi_engine.evaluator.skills import EvaluatorSkill, check_weights
from koi_engine.evaluator.utils import generate_suggestion
from koi_engine.observability import span

logger = logging.getLogger(__name__)

DEFAULT_BLOCKER_CAP = 0.4


class EvaluationAggregator:
    def __init__(
        self,
        scorers: Sequence[Scorer],
        retry_policy: RetryPolicy = NO_RETRY,
        scorer_timeout: Optional[float] = None,
        blocker_score_cap: float = DEFAULT_BLOCKER_CAP,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self._scorers: Dict[str, Scorer] = {}
        for scorer in scorers:
            if scorer.dimension in self._scorers:
                raise SkillConfigurationError(f"Two scorers registered for '{scorer.dimension}'")
            self._scorers[scorer.dimension] = scorer
        self._retry_policy = retry_policy
        self._scorer_timeout = scorer_timeout
        self._blocker_cap = blocker_score_cap
        self._cancel_event = cancel_event

    @property
    def dimensions(self) -> Tuple[str, ...]:
        return tuple(self._scorers)

    def check_skill(self, skill: EvaluatorSkill) -> None:
        """Raise SkillConfigurationError if this skill cannot be evaluated."""
        check_weights(skill)
        missing = [d.name for d in skill.dimensions if d.name not in self._scorers]
        if missing:
            raise SkillConfigurationError(
                f"Evaluator skill '{skill.name}' has no scorer for: {', '.join(missing)}"
            )

    async def evaluate(
        self,
        artifact: Artifact,
        skill: EvaluatorSkill,
        context: IterationContext,
    ) -> EvaluationResult:
        self.check_skill(skill)

        with span(
            "evaluate iteration {iteration}",
            iteration=context.iteration_index,
            skill=skill.name,
        ):
            outcomes = await asyncio.gather(
                *(self._run_scorer(d.name, artifact, context) for d in skill.dimensions)
            )

        return combine(skill.weights(), dict(zip(skill.weights(), outcomes)), self._blocker_cap)

    async def _run_scorer(
        self, dimension: str, artifact: Artifact, context: IterationContext
    ) -> "ScorerOutcome":
        scorer = self._scorers[dimension]

        async def attempt() -> ScoreCard:
            if self._scorer_timeout is None:
                return await scorer.score(artifact, context)
            return await asyncio.wait_for(scorer.score(artifact, context), self._scorer_timeout)

        try:
            card = await retry_async(
                attempt,
                self._retry_policy,
                name=f"scorer '{dimension}'",
                cancel_event=self._cancel_event,
            )
            score = _validated_score(card.score)
        except Exception as e:
            logger.warning(f"Scorer '{dimension}' degraded: {type(e).__name__}: {e}")
            return ScorerOutcome(card=None, error=str(e) or type(e).__name__)

        return ScorerOutcome(card=card, score=score)


class ScorerOutcome:
    """A scorer's card, or the reason it degraded."""

    __slots__ = ("card", "score", "error")

    def __init__(self, card: Optional[ScoreCard], score: float = 0.0, error: Optional[str] = None):
        self.card = card
        self.score = score
        self.error = error

    @property
    def degraded(self) -> bool:
        return self.card is None


def _validated_score(value: float) -> float:
    """Clamp into [0, 1]. NaN or non-numeric scores count as scorer failures."""
    try:
        score = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"non-numeric score {value!r}") from e
    if math.isnan(score):
        raise ValueError("scorer returned NaN")
    return min(1.0, max(0.0, score))


def degraded_finding(dimension: str, reason: str) -> Finding:
    return Finding(
        severity=Severity.BLOCKER,
        dimension=dimension,
        title="Scorer unavailable",
        description=reason,
    )


def combine(
    weights: Mapping[str, float],
    outcomes: Mapping[str, ScorerOutcome],
    blocker_score_cap: float = DEFAULT_BLOCKER_CAP,
) -> EvaluationResult:
    """Weighted sum plus Blocker cap over already-collected scorer outcomes."""
    dimensions: List[DimensionScore] = []
    findings: List[Finding] = []
    usage = TokenUsage()

    for name, weight in weights.items():
        outcome = outcomes[name]
        if outcome.card is None:
            dimensions.append(DimensionScore(name, weight, 0.0, degraded=True))
            findings.append(degraded_finding(name, outcome.error or "unknown failure"))
            continue
        dimensions.append(
            DimensionScore(
                name,
                weight,
                outcome.score,
                usage=outcome.card.usage,
                model=outcome.card.model,
            )
        )
        findings.extend(
            f if f.dimension else f.model_copy(update={"dimension": name})
            for f in outcome.card.findings
        )
        usage = usage + outcome.card.usage

    raw = min(1.0, max(0.0, sum(d.weighted for d in dimensions)))
    aggregate = raw
    if any(f.severity is Severity.BLOCKER for f in findings):
        aggregate = min(raw, blocker_score_cap)
        if aggregate < raw:
            logger.info(f"Blocker finding caps score {raw:.3f} -> {aggregate:.3f}")

    return EvaluationResult(
        aggregate=aggregate,
        raw_score=raw,
        dimensions=tuple(dimensions),
        findings=tuple(findings),
        usage=usage,
        suggestion=generate_suggestion(findings),
    )
