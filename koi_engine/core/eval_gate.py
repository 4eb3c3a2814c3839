"""Conservative ``should_evaluate`` gate.

Evaluation is the default. It is skipped only when the new artifact is
provably a no-op relative to the previous iteration:

- the content fingerprint is identical to the previous artifact, or
- the executor reported an explicitly empty diff.

The first iteration always evaluates, and an unknown diff (``None``) counts
as a change.
"""

from typing import Optional

from koi_engine.core.types import Artifact


def should_evaluate(
    artifact: Artifact,
    previous_artifact: Optional[Artifact],
    iteration_index: int,
    skip_identical: bool = True,
) -> bool:
    if iteration_index <= 1 or previous_artifact is None:
        return True
    if not skip_identical:
        return True
    if artifact.diff is not None and not artifact.diff.strip():
        return False
    return artifact.fingerprint() != previous_artifact.fingerprint()
