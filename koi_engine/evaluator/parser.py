"""Parse judge responses into scores, findings and a suggestion.

Expected layout::

    SCORES:
    correctness: 0.85
    FINDINGS:
    - [BLOCKER] title: description
    SUGGESTION: brief guidance

Markdown headers (``## Scores`` etc.) are accepted too. Scores outside
[0, 1] or unparseable lines are dropped. Dimensions missing from the
response are not filled with defaults; the caller decides what a missing
score means.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from koi_engine.core.types import Finding, Severity

SEVERITY_ALIASES = {
    "BLOCKER": Severity.BLOCKER,
    "CRITICAL": Severity.BLOCKER,
    "IMPORTANT": Severity.IMPORTANT,
    "MAJOR": Severity.IMPORTANT,
    "HIGH": Severity.IMPORTANT,
    "SUGGESTION": Severity.SUGGESTION,
    "MINOR": Severity.SUGGESTION,
    "LOW": Severity.SUGGESTION,
}

_FINDING_RE = re.compile(r"^\[(?P<severity>[^\]]+)\]\s*(?P<rest>.*)$")

_SECTIONS = {
    "scores": ("SCORES:", "## Scores"),
    "findings": ("FINDINGS:", "## Findings"),
    "suggestion": ("SUGGESTION:", "## Suggestion"),
}


@dataclass
class ParsedEval:
    scores: Dict[str, float] = field(default_factory=dict)
    findings: List[Finding] = field(default_factory=list)
    suggestion: str = ""


def _section_header(line: str) -> Optional[Tuple[str, str]]:
    for section, prefixes in _SECTIONS.items():
        for prefix in prefixes:
            if line.startswith(prefix):
                return section, line[len(prefix):].strip()
    return None


def parse_score_line(line: str) -> Optional[Tuple[str, float]]:
    """``"- correctness: 0.85"`` -> ``("correctness", 0.85)``"""
    line = line.lstrip("-*").strip()
    name, sep, raw = line.partition(":")
    if not sep or not name.strip():
        return None
    try:
        score = float(raw.strip())
    except ValueError:
        return None
    if not 0.0 <= score <= 1.0:
        return None
    return name.strip(), score


def parse_finding_line(line: str, dimension: str = "") -> Optional[Finding]:
    """``"- [BLOCKER] title: description"``; bare lines become suggestions."""
    line = line.lstrip("-*").strip()
    if not line:
        return None

    match = _FINDING_RE.match(line)
    if match:
        severity = SEVERITY_ALIASES.get(match.group("severity").strip().upper(), Severity.SUGGESTION)
        rest = match.group("rest").strip()
    else:
        severity = Severity.SUGGESTION
        rest = line

    title, _, description = rest.partition(":")
    return Finding(
        severity=severity,
        dimension=dimension,
        title=title.strip() or rest,
        description=description.strip(),
    )


def parse_eval_response(response: str, dimension: str = "") -> ParsedEval:
    """Parse a judge response. Findings are attributed to ``dimension``."""
    parsed = ParsedEval()
    section: Optional[str] = None

    for raw_line in response.splitlines():
        line = raw_line.strip()
        header = _section_header(line)
        if header is not None:
            section, rest = header
            if section == "suggestion" and rest:
                parsed.suggestion = rest
            continue

        if not line:
            continue
        if section == "scores":
            score_line = parse_score_line(line)
            if score_line is not None:
                name, score = score_line
                parsed.scores[name.lower()] = score
        elif section == "findings":
            finding = parse_finding_line(line, dimension)
            if finding is not None:
                parsed.findings.append(finding)
        elif section == "suggestion":
            parsed.suggestion = f"{parsed.suggestion} {line}".strip()

    return parsed
