"""Evaluation: skills, scorers, judge-response parsing and aggregation."""

from .aggregator import EvaluationAggregator
from .skills import DimensionDef, EvaluatorSkill, SkillRegistry
from .scorers import CommandScorer, Completion, JudgeScorer, StaticScorer

__all__ = [
    "EvaluationAggregator",
    "DimensionDef",
    "EvaluatorSkill",
    "SkillRegistry",
    "CommandScorer",
    "Completion",
    "JudgeScorer",
    "StaticScorer",
]
