"""Error taxonomy for the iteration engine.

Errors are split by how the engine reacts to them:

1. **Transient** - rate limits, timeouts, transport hiccups. Retried locally
   with exponential backoff and jitter; exhausting the retries escalates to
   a fatal failure for the iteration.
2. **Fatal** - authentication, invalid requests, exhausted retries. Aborts
   the current iteration and ends the task with a FAILED outcome.
3. **Scorer** - a scorer that cannot produce a score. Never fails the task;
   the aggregator degrades the dimension to a Blocker finding.
4. **Persistence** - losing a record is recoverable, so these are logged as
   warnings and never abort a running task.

Budget, regression, quality and iteration-limit outcomes are *not* errors.
They are decisions (see ``koi_engine.core.decision``).
"""

from typing import Optional


class KoiEngineError(Exception):
    """Base class for all engine errors."""

    retriable: bool = False


# =============================================================================
# Transient errors (retried)
# =============================================================================


class TransientError(KoiEngineError):
    """A failure that is expected to go away on retry."""

    retriable = True


class RateLimitedError(TransientError):
    """Provider answered 429 / quota exceeded."""

    def __init__(self, provider: str, retry_after: Optional[float] = None):
        self.provider = provider
        self.retry_after = retry_after
        if retry_after:
            message = f"Rate limited by '{provider}', retry after {retry_after:.1f}s"
        else:
            message = f"Rate limited by '{provider}'"
        super().__init__(message)


class ProviderTimeoutError(TransientError):
    """The provider did not answer in time."""


class TransportError(TransientError):
    """Connection reset, DNS failure, 5xx and similar transport problems."""


class ContextOverflowError(TransientError):
    """The request did not fit in the model context; the executor may prune and retry."""


# =============================================================================
# Fatal errors (abort the iteration)
# =============================================================================


class FatalError(KoiEngineError):
    """A failure that retrying will not fix."""


class AuthenticationError(FatalError):
    """Credentials missing, expired or rejected."""


class InvalidRequestError(FatalError):
    """The provider rejected the request as malformed."""


class RetriesExhaustedError(FatalError):
    """A transient failure persisted past the retry ceiling."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )


# =============================================================================
# Evaluation errors
# =============================================================================


class ScorerError(KoiEngineError):
    """A scorer failed permanently for this artifact."""

    def __init__(self, dimension: str, message: str):
        self.dimension = dimension
        super().__init__(f"Scorer '{dimension}' failed: {message}")


class SkillConfigurationError(FatalError):
    """An evaluator skill cannot be used (bad weights, missing scorers)."""


# =============================================================================
# Boundary / infrastructure errors
# =============================================================================


class InvalidTaskError(KoiEngineError, ValueError):
    """Task submission failed validation; no iteration was started."""


class UnknownTaskError(KoiEngineError, KeyError):
    """No task with the given id is known to the task manager."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Unknown task '{task_id}'")


class PersistenceError(KoiEngineError):
    """A state, history or memory write failed."""


def is_retriable(error: BaseException) -> bool:
    """Return True if ``error`` should be retried with backoff."""
    if isinstance(error, KoiEngineError):
        return error.retriable
    # asyncio.wait_for raises TimeoutError (builtin alias on 3.11+)
    return isinstance(error, TimeoutError)
