"""Tests for evaluator skills, the skill registry and evaluator helpers."""

import pytest
from pydantic import ValidationError

from koi_engine.core.types import Finding, Severity, Task
from koi_engine.errors import SkillConfigurationError
from koi_engine.evaluator.skills import (
    CODE_SKILL,
    GENERAL_SKILL,
    DimensionDef,
    EvaluatorSkill,
    SkillRegistry,
    check_weights,
)
from koi_engine.evaluator.utils import compute_diff_ratio, generate_suggestion, truncate_for_eval


class TestEvaluatorSkill:
    """Weight validation on construction."""

    def test_builtin_skills_are_valid(self):
        """Shipped skills sum to 1.0."""
        for skill in (GENERAL_SKILL, CODE_SKILL):
            check_weights(skill)
            assert sum(skill.weights().values()) == pytest.approx(1.0)

    def test_weights_must_sum_to_one(self):
        """0.5 + 0.4 is rejected."""
        with pytest.raises(ValidationError):
            EvaluatorSkill(
                name="bad",
                dimensions=(DimensionDef(name="a", weight=0.5), DimensionDef(name="b", weight=0.4)),
            )

    def test_tolerance(self):
        """Floating-point noise within 1e-6 is accepted."""
        skill = EvaluatorSkill(
            name="thirds",
            dimensions=tuple(DimensionDef(name=n, weight=1 / 3) for n in ("a", "b", "c")),
        )
        check_weights(skill)

    def test_duplicate_dimensions(self):
        """Dimension names are unique."""
        with pytest.raises(ValidationError):
            EvaluatorSkill(
                name="dup",
                dimensions=(DimensionDef(name="a", weight=0.5), DimensionDef(name="a", weight=0.5)),
            )

    def test_check_weights_on_unvalidated_skill(self):
        """check_weights catches skills built without validation."""
        skill = EvaluatorSkill.model_construct(
            name="raw", dimensions=(DimensionDef(name="a", weight=0.2),), categories=(), rubric=""
        )
        with pytest.raises(SkillConfigurationError):
            check_weights(skill)


class TestSkillRegistry:
    """Skill selection by task category."""

    def test_selects_by_category(self):
        """Code tasks get the code skill."""
        assert SkillRegistry().select(Task(description="fix it", category="bugfix")) is CODE_SKILL

    def test_general_fallback(self):
        """Unknown categories fall back to general."""
        assert SkillRegistry().select(Task(description="poem", category="poetry")) is GENERAL_SKILL

    def test_no_fallback(self):
        """Without a general skill an unknown category is a configuration error."""
        registry = SkillRegistry([CODE_SKILL])
        with pytest.raises(SkillConfigurationError):
            registry.select(Task(description="poem", category="poetry"))

    def test_register_replaces_by_name(self):
        """Registering a skill with an existing name replaces it."""
        registry = SkillRegistry()
        custom = EvaluatorSkill(
            name="general",
            dimensions=(DimensionDef(name="quality", weight=1.0),),
            categories=("general",),
        )
        registry.register(custom)
        assert registry.get("general") is custom


class TestEvaluatorUtils:
    """Suggestion and diff helpers."""

    def test_suggestion_prefers_blockers(self):
        """The most severe finding leads the suggestion."""
        findings = [
            Finding(severity=Severity.IMPORTANT, dimension="a", title="Slow"),
            Finding(severity=Severity.BLOCKER, dimension="a", title="Crashes"),
        ]
        assert generate_suggestion(findings) == "Fix 2 critical issue(s): Crashes"

    def test_suggestion_without_findings(self):
        """No findings means keep going."""
        assert generate_suggestion([]).startswith("Maintain current direction")

    @pytest.mark.parametrize(
        "previous,current,expected",
        [
            ("a\nb", "a\nb", 0.0),
            ("a\nb", "a\nc", 0.5),
            ("", "", 0.0),
            ("a", "a\nb\nc\nd", 0.75),
        ],
    )
    def test_compute_diff_ratio(self, previous, current, expected):
        """Share of line positions that changed."""
        assert compute_diff_ratio(previous, current) == pytest.approx(expected)

    def test_truncate_for_eval(self):
        """Long artifacts are cut for the judge prompt."""
        assert truncate_for_eval("abcdef", 3) == "abc"
        assert truncate_for_eval("ab", 3) == "ab"
