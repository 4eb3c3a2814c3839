"""Evaluator skills: which dimensions to score and how much each weighs.

A skill is rejected when it is built if its weights do not sum to 1.0. The
aggregator checks the total again at its own boundary, since skills can also
be constructed with ``model_construct`` or loaded from elsewhere.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from koi_engine.core.types import Task
from koi_engine.errors import SkillConfigurationError

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6


class DimensionDef(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    weight: float = Field(ge=0.0, le=1.0, allow_inf_nan=False)
    description: str = ""


class EvaluatorSkill(BaseModel):
    """Named rubric with weighted dimensions."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    dimensions: Tuple[DimensionDef, ...]
    categories: Tuple[str, ...] = ()
    rubric: str = ""

    @field_validator("dimensions")
    @classmethod
    def unique_dimensions(cls, value: Tuple[DimensionDef, ...]) -> Tuple[DimensionDef, ...]:
        names = [d.name for d in value]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate dimension names: {names}")
        if not value:
            raise ValueError("an evaluator skill needs at least one dimension")
        return value

    @model_validator(mode="after")
    def validate_weight_total(self) -> "EvaluatorSkill":
        """Require weights summing to 1.0."""
        total = sum(d.weight for d in self.dimensions)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"dimension weights of '{self.name}' sum to {total:.6f}, expected 1.0")
        return self

    def weights(self) -> Dict[str, float]:
        return {d.name: d.weight for d in self.dimensions}


def check_weights(skill: EvaluatorSkill) -> None:
    """Raise SkillConfigurationError unless the weights sum to 1.0."""
    total = sum(d.weight for d in skill.dimensions)
    if not skill.dimensions or abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise SkillConfigurationError(
            f"Evaluator skill '{skill.name}' weights sum to {total:.6f}, expected 1.0"
        )


GENERAL_SKILL = EvaluatorSkill(
    name="general",
    dimensions=(
        DimensionDef(name="correctness", weight=0.4, description="Does the output do what was asked?"),
        DimensionDef(name="completeness", weight=0.3, description="Is anything missing?"),
        DimensionDef(name="clarity", weight=0.3, description="Is it easy to read and follow?"),
    ),
    categories=("general",),
)

CODE_SKILL = EvaluatorSkill(
    name="code-review",
    dimensions=(
        DimensionDef(name="correctness", weight=0.4),
        DimensionDef(name="tests", weight=0.3),
        DimensionDef(name="style", weight=0.15),
        DimensionDef(name="safety", weight=0.15),
    ),
    categories=("code", "bugfix", "refactor"),
)


class SkillRegistry:
    """Picks the evaluator skill for a task by category.

    Falls back to the skill named ``general``.
    """

    def __init__(self, skills: Optional[Iterable[EvaluatorSkill]] = None):
        self._skills: List[EvaluatorSkill] = list(skills) if skills is not None else [
            GENERAL_SKILL,
            CODE_SKILL,
        ]

    def register(self, skill: EvaluatorSkill) -> None:
        self._skills = [s for s in self._skills if s.name != skill.name]
        self._skills.append(skill)

    def get(self, name: str) -> Optional[EvaluatorSkill]:
        return next((s for s in self._skills if s.name == name), None)

    def select(self, task: Task) -> EvaluatorSkill:
        for skill in self._skills:
            if task.category in skill.categories:
                return skill
        fallback = self.get("general")
        if fallback is None:
            raise SkillConfigurationError(
                f"No evaluator skill for category '{task.category}' and no 'general' fallback"
            )
        logger.debug(f"No skill for category '{task.category}', using 'general'")
        return fallback
