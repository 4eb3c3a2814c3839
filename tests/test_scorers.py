"""Tests for judge-response parsing and the reference scorers."""

import sys

import pytest

from helpers import make_task
from koi_engine.core.collaborators import IterationContext
from koi_engine.core.types import Artifact, Severity, TokenUsage
from koi_engine.errors import AuthenticationError, ProviderTimeoutError, ScorerError
from koi_engine.evaluator.parser import parse_eval_response, parse_finding_line, parse_score_line
from koi_engine.evaluator.scorers import (
    CommandScorer,
    Completion,
    JudgeScorer,
    StaticScorer,
    parse_pass_ratio,
)

CONTEXT = IterationContext(task=make_task(), iteration_index=1)
ARTIFACT = Artifact(content="Koi drift in still ponds")

JUDGE_RESPONSE = """SCORES:
correctness: 0.85
clarity: 0.7
FINDINGS:
- [BLOCKER] Wrong syllable count: line two has eight syllables
- [MAJOR] Weak imagery: pond is generic
- consider a seasonal word
SUGGESTION: Fix the syllable count first.
"""


class TestParser:
    """Judge response parsing."""

    def test_full_response(self):
        """Scores, findings and the suggestion are all extracted."""
        parsed = parse_eval_response(JUDGE_RESPONSE, dimension="correctness")

        assert parsed.scores == {"correctness": 0.85, "clarity": 0.7}
        assert [f.severity for f in parsed.findings] == [
            Severity.BLOCKER,
            Severity.IMPORTANT,
            Severity.SUGGESTION,
        ]
        assert parsed.findings[0].title == "Wrong syllable count"
        assert parsed.findings[0].description == "line two has eight syllables"
        assert all(f.dimension == "correctness" for f in parsed.findings)
        assert parsed.suggestion == "Fix the syllable count first."

    def test_markdown_headers(self):
        """## headers work like the plain ones."""
        parsed = parse_eval_response("## Scores\n- Correctness: 0.5\n## Suggestion\nKeep going\n")
        assert parsed.scores == {"correctness": 0.5}
        assert parsed.suggestion == "Keep going"

    def test_missing_scores_are_not_defaulted(self):
        """Dimensions absent from the response stay absent."""
        parsed = parse_eval_response("FINDINGS:\n- [LOW] nit\n")
        assert parsed.scores == {}

    @pytest.mark.parametrize("line", ["correctness: 1.5", "correctness: high", "no colon here", ": 0.5"])
    def test_bad_score_lines(self, line):
        """Out-of-range or malformed scores are dropped."""
        assert parse_score_line(line) is None

    def test_unknown_severity_is_suggestion(self):
        """Unrecognised tags degrade to Suggestion."""
        finding = parse_finding_line("[WHATEVER] thing")
        assert finding is not None
        assert finding.severity is Severity.SUGGESTION

    def test_critical_is_blocker(self):
        """CRITICAL is an alias for Blocker."""
        assert parse_finding_line("- [critical] crash").severity is Severity.BLOCKER


class TestJudgeScorer:
    """LLM judge scoring through an injected completion function."""

    @pytest.mark.asyncio
    async def test_scores_dimension(self):
        """The judge's score and findings become the card."""
        prompts = []

        async def complete(prompt):
            prompts.append(prompt)
            return Completion(text=JUDGE_RESPONSE, usage=TokenUsage(900, 120), model="gpt-4o-mini")

        card = await JudgeScorer("correctness", complete).score(ARTIFACT, CONTEXT)

        assert card.score == 0.85
        assert card.model == "gpt-4o-mini"
        assert card.usage.total == 1020
        assert len(card.findings) == 3
        assert CONTEXT.task.description in prompts[0]
        assert ARTIFACT.content in prompts[0]

    @pytest.mark.asyncio
    async def test_missing_score_is_scorer_error(self):
        """No score for the dimension is a permanent scorer failure."""

        async def complete(prompt):
            return Completion(text="SCORES:\nclarity: 0.9\n")

        with pytest.raises(ScorerError):
            await JudgeScorer("correctness", complete).score(ARTIFACT, CONTEXT)

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self):
        """Provider errors reach the aggregator unchanged for classification."""

        async def complete(prompt):
            raise AuthenticationError("expired key")

        with pytest.raises(AuthenticationError):
            await JudgeScorer("correctness", complete).score(ARTIFACT, CONTEXT)


class TestCommandScorer:
    """Running a command as a scorer."""

    @pytest.mark.asyncio
    async def test_success_scores_one(self):
        """Exit status 0 without a summary scores 1.0."""
        scorer = CommandScorer("tests", [sys.executable, "-c", "print('ok')"])
        card = await scorer.score(ARTIFACT, CONTEXT)
        assert card.score == 1.0
        assert card.findings == ()

    @pytest.mark.asyncio
    async def test_failure_uses_pass_ratio(self):
        """A failing pytest-style run scores its pass ratio."""
        script = "import sys; print('3 passed, 1 failed in 0.1s'); sys.exit(1)"
        card = await CommandScorer("tests", [sys.executable, "-c", script]).score(ARTIFACT, CONTEXT)

        assert card.score == pytest.approx(0.75)
        assert card.findings[0].severity is Severity.IMPORTANT
        assert card.findings[0].title == "1 of 4 checks failing"
        assert "3 passed" in card.findings[0].description

    @pytest.mark.asyncio
    async def test_failure_without_summary_scores_zero(self):
        """A non-zero exit with no summary scores 0.0."""
        card = await CommandScorer("lint", [sys.executable, "-c", "raise SystemExit(2)"]).score(ARTIFACT, CONTEXT)
        assert card.score == 0.0
        assert "status 2" in card.findings[0].title

    @pytest.mark.asyncio
    async def test_missing_command(self):
        """A command that does not exist is a permanent scorer failure."""
        scorer = CommandScorer("tests", ["definitely-not-a-real-binary-koi"])
        with pytest.raises(ScorerError):
            await scorer.score(ARTIFACT, CONTEXT)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        """A hung command is killed and reported as a timeout."""
        scorer = CommandScorer("tests", [sys.executable, "-c", "import time; time.sleep(30)"], timeout_seconds=0.2)
        with pytest.raises(ProviderTimeoutError):
            await scorer.score(ARTIFACT, CONTEXT)

    def test_empty_argv_rejected(self):
        """A command is required."""
        with pytest.raises(ValueError):
            CommandScorer("tests", [])

    @pytest.mark.parametrize(
        "output,expected",
        [
            ("=== 10 passed in 1.2s ===", (10, 10)),
            ("2 failed, 8 passed, 1 error in 3s", (8, 11)),
            ("no summary here", None),
        ],
    )
    def test_parse_pass_ratio(self, output, expected):
        """pytest summary lines are counted."""
        assert parse_pass_ratio(output) == expected


class TestStaticScorer:
    @pytest.mark.asyncio
    async def test_static(self):
        """Always the same card."""
        card = await StaticScorer("quality", 0.6).score(ARTIFACT, CONTEXT)
        assert card.score == 0.6
