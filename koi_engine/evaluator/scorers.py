"""Reference scorers.

- ``JudgeScorer``: asks an LLM judge for a rubric score on one dimension.
- ``CommandScorer``: runs a test or lint command and scores its result.
- ``StaticScorer``: fixed score, for wiring and tests.

Each scorer classifies its own failures: transient ones raise a
``TransientError`` (retried by the aggregator), permanent ones raise
``ScorerError`` (degraded to a Blocker finding).
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from koi_engine.core.collaborators import IterationContext
from koi_engine.core.types import Artifact, Finding, ScoreCard, Severity, TokenUsage
from koi_engine.errors import ProviderTimeoutError, ScorerError
from koi_engine.evaluator.parser import parse_eval_response
from koi_engine.evaluator.utils import truncate_for_eval

logger = logging.getLogger(__name__)

MAX_ARTIFACT_CHARS = 50_000
OUTPUT_TAIL_CHARS = 2_000


# =============================================================================
# LLM judge
# =============================================================================


@dataclass(frozen=True)
class Completion:
    """A judge model reply."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None


CompleteFn = Callable[[str], Awaitable[Completion]]

JUDGE_PROMPT = """You are an evaluator. Use the following rubric to evaluate the output.

## Rubric
{rubric}

## Task
{task}

## Output to evaluate
{output}

Score the dimension "{dimension}" from 0.0 to 1.0. List findings with severity.
Respond in this format:
SCORES:
{dimension}: score
FINDINGS:
- [BLOCKER|IMPORTANT|SUGGESTION] title: description
SUGGESTION: brief improvement guidance
"""


class JudgeScorer:
    """Scores one rubric dimension through an injected completion function.

    The completion function is expected to raise the engine's error types
    (``RateLimitedError``, ``ProviderTimeoutError``, ``AuthenticationError``...).
    """

    def __init__(self, dimension: str, complete: CompleteFn, rubric: str = ""):
        self.dimension = dimension
        self._complete = complete
        self._rubric = rubric or f"Judge the output on {dimension}."

    def build_prompt(self, artifact: Artifact, context: IterationContext) -> str:
        return JUDGE_PROMPT.format(
            rubric=self._rubric,
            task=context.task.description,
            output=truncate_for_eval(artifact.content, MAX_ARTIFACT_CHARS),
            dimension=self.dimension,
        )

    async def score(self, artifact: Artifact, context: IterationContext) -> ScoreCard:
        completion = await self._complete(self.build_prompt(artifact, context))
        parsed = parse_eval_response(completion.text, dimension=self.dimension)

        score = parsed.scores.get(self.dimension.lower())
        if score is None:
            raise ScorerError(self.dimension, "judge response had no score for this dimension")

        return ScoreCard(
            score=score,
            findings=tuple(parsed.findings),
            usage=completion.usage,
            model=completion.model,
        )


# =============================================================================
# Command runner
# =============================================================================

_PYTEST_COUNT_RE = re.compile(r"(\d+) (passed|failed|error|errors)\b")


def parse_pass_ratio(output: str) -> Optional[Tuple[int, int]]:
    """(passed, total) from a pytest-style summary line, if present."""
    counts = {"passed": 0, "failed": 0, "error": 0}
    found = False
    for number, label in _PYTEST_COUNT_RE.findall(output):
        key = "error" if label.startswith("error") else label
        counts[key] += int(number)
        found = True
    if not found:
        return None
    total = counts["passed"] + counts["failed"] + counts["error"]
    if total == 0:
        return None
    return counts["passed"], total


class CommandScorer:
    """Runs a command and turns its outcome into a dimension score.

    Exit code 0 scores 1.0. A non-zero exit scores the pass ratio when the
    output carries a pytest-style summary, else 0.0. Failures produce an
    Important finding carrying the tail of the output.
    """

    def __init__(
        self,
        dimension: str,
        argv: Sequence[str],
        cwd: Optional[Path] = None,
        timeout_seconds: float = 300.0,
    ):
        if not argv:
            raise ValueError("argv must not be empty")
        self.dimension = dimension
        self.argv = list(argv)
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    async def score(self, artifact: Artifact, context: IterationContext) -> ScoreCard:
        logger.debug(f"Running {self.argv} for dimension '{self.dimension}'")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.cwd,
            )
        except FileNotFoundError as e:
            raise ScorerError(self.dimension, f"command not found: {self.argv[0]}") from e
        except PermissionError as e:
            raise ScorerError(self.dimension, f"command not executable: {self.argv[0]}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ProviderTimeoutError(
                f"{self.argv[0]} timed out after {self.timeout_seconds}s"
            ) from e
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode == 0:
            ratio = parse_pass_ratio(output)
            score = ratio[0] / ratio[1] if ratio else 1.0
            return ScoreCard(score=score)

        ratio = parse_pass_ratio(output)
        if ratio is not None:
            passed, total = ratio
            score = passed / total
            title = f"{total - passed} of {total} checks failing"
        else:
            score = 0.0
            title = f"{self.argv[0]} exited with status {process.returncode}"

        finding = Finding(
            severity=Severity.IMPORTANT,
            dimension=self.dimension,
            title=title,
            description=output[-OUTPUT_TAIL_CHARS:].strip(),
            location=str(self.cwd) if self.cwd else None,
        )
        return ScoreCard(score=score, findings=(finding,))


class StaticScorer:
    """Always returns the same card."""

    def __init__(self, dimension: str, score: float, findings: Sequence[Finding] = ()):
        self.dimension = dimension
        self._card = ScoreCard(score=score, findings=tuple(findings))

    async def score(self, artifact: Artifact, context: IterationContext) -> ScoreCard:
        return self._card
