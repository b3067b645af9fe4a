"""
Retry policy shared by provider fetches and remote sheet calls.

Every network call site hands its coroutine to a ``RetryPolicy``; the policy
owns the attempt budget, the "is this retryable" predicate and the delay
selection (explicit retry-after hint first, exponential backoff with jitter
otherwise). Attempt bookkeeping lives in tenacity's per-call
``RetryCallState`` so no state is shared between operations.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

logger = structlog.get_logger()

T = TypeVar("T")


def _no_hint(error: BaseException) -> float | None:
    return None


@dataclass
class RetryPolicy:
    """
    Bounded retry with exponential backoff, jitter and retry-after support.

    Delays are in seconds. ``attempt`` in :meth:`backoff` is the zero-based
    index of the attempt that just failed, so the first wait is
    ``base_delay + jitter``.

    ``jitter_max`` may not exceed ``base_delay``; with that bound the worst
    delay for one attempt never exceeds the best delay for the next, so
    backoff grows monotonically whatever the jitter draws.
    """

    max_attempts: int
    base_delay: float
    jitter_max: float
    is_retryable: Callable[[BaseException], bool]
    retry_after: Callable[[BaseException], float | None] = _no_hint
    min_retry_after: float = 0.0
    name: str = "call"
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.jitter_max < 0:
            raise ValueError("base_delay and jitter_max must be >= 0")
        if self.jitter_max > self.base_delay:
            raise ValueError(
                f"jitter_max ({self.jitter_max}s) must not exceed base_delay ({self.base_delay}s)"
            )

    def backoff(self, attempt: int) -> float:
        """Exponential backoff for a failed attempt, plus uniform jitter."""
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.jitter_max)

    def delay_for(self, error: BaseException, attempt: int) -> float:
        """Delay before the next attempt: the server hint if any, else backoff."""
        hint = self.retry_after(error)
        if hint is not None:
            return max(self.min_retry_after, hint)
        return self.backoff(attempt)

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        return self.delay_for(error, retry_state.attempt_number - 1)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "Retrying after error",
            operation=self.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            wait_ms=round(retry_state.next_action.sleep * 1000),
            error=str(error),
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``fn(*args, **kwargs)`` until it succeeds or the budget is spent.

        Non-retryable errors propagate from the first failure; after the last
        attempt the last observed error is re-raised unchanged.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception(self.is_retryable),
            wait=self._wait,
            sleep=self.sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)
