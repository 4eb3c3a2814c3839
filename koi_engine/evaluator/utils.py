"""Small helpers shared by the evaluator."""

from typing import Sequence

from koi_engine.core.types import Finding, Severity


def generate_suggestion(findings: Sequence[Finding]) -> str:
    """One-line guidance for the next iteration, most severe issues first."""
    critical = [
        f for f in findings if f.severity in (Severity.BLOCKER, Severity.IMPORTANT)
    ]
    if critical:
        critical.sort(key=lambda f: f.severity is not Severity.BLOCKER)
        return f"Fix {len(critical)} critical issue(s): {critical[0].title}"
    if findings:
        return f"Address {len(findings)} minor suggestion(s) to further improve quality."
    return "Maintain current direction. No issues found."


def compute_diff_ratio(previous: str, current: str) -> float:
    """Fraction of line positions that differ between two texts."""
    prev_lines = previous.splitlines()
    curr_lines = current.splitlines()
    total = max(len(prev_lines), len(curr_lines))
    if total == 0:
        return 0.0
    changed = sum(
        1
        for i in range(total)
        if (prev_lines[i] if i < len(prev_lines) else "")
        != (curr_lines[i] if i < len(curr_lines) else "")
    )
    return changed / total


def truncate_for_eval(text: str, max_chars: int) -> str:
    return text if len(text) <= max_chars else text[:max_chars]
