"""Bounded retry with exponential backoff and jitter.

The schedule is a pure function (``RetryPolicy.delay_for_attempt``) and the
retry itself is an explicit loop, so the cancellation check right before each
sleep is visible in one place.

    delay(n) = min(max_delay, initial_delay * backoff_factor ** n) +/- jitter

Only retriable errors (see ``koi_engine.errors.is_retriable``) are retried.
Anything else propagates unchanged; exhausting the attempts raises
``RetriesExhaustedError`` carrying the last transient error.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from koi_engine.errors import RateLimitedError, RetriesExhaustedError, is_retriable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryCancelled(asyncio.CancelledError):
    """Raised when cancellation is requested while waiting to retry."""


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry schedule."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    jitter_fraction: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ValueError("jitter_fraction must be within [0, 1]")

    def base_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), without jitter."""
        return min(self.max_delay, self.initial_delay * (self.backoff_factor**attempt))

    def delay_for_attempt(
        self, attempt: int, rng: Optional[random.Random] = None
    ) -> float:
        """Delay with symmetric jitter, never negative and never above max_delay."""
        base = self.base_delay(attempt)
        if not self.jitter_fraction or not base:
            return base
        uniform = (rng or random).uniform
        jitter = uniform(-self.jitter_fraction, self.jitter_fraction) * base
        return min(self.max_delay, max(0.0, base + jitter))


NO_RETRY = RetryPolicy(max_attempts=1, initial_delay=0.0, jitter_fraction=0.0)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    name: str = "operation",
    cancel_event: Optional[asyncio.Event] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt ceiling and backoff schedule
        name: Label used in logs and in RetriesExhaustedError
        cancel_event: When set, no further sleep or attempt happens
        sleep: Injected for tests
        rng: Injected for deterministic jitter

    Raises:
        RetryCancelled: cancel_event was set before a retry sleep
        RetriesExhaustedError: every attempt failed with a retriable error
    """
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_retriable(e):
                raise
            if attempt == policy.max_attempts - 1:
                logger.warning(f"{name} gave up after {policy.max_attempts} attempt(s): {e}")
                raise RetriesExhaustedError(name, policy.max_attempts, e) from e
            last_error = e

        delay = policy.delay_for_attempt(attempt, rng)
        if isinstance(last_error, RateLimitedError) and last_error.retry_after:
            delay = min(policy.max_delay, max(delay, last_error.retry_after))

        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelled(f"{name} cancelled before retry {attempt + 1}")

        logger.info(
            f"{name} attempt {attempt + 1}/{policy.max_attempts} failed "
            f"({type(last_error).__name__}), retrying in {delay:.2f}s"
        )
        await sleep(delay)

    raise ValueError(f"{name}: retry policy allows no attempts")
