"""
Rate-limit aware wrapper around every remote sheet store call.
"""
import asyncio
from dataclasses import replace
from typing import Any, Awaitable, Callable, TypeVar

from iyield_ingest.config import Settings
from iyield_ingest.exceptions import StoreError
from iyield_ingest.utils.retry import RetryPolicy

T = TypeVar("T")

RATE_LIMIT_STATUSES = frozenset({429, 503})
RATE_LIMIT_REASONS = frozenset({
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "RESOURCE_EXHAUSTED",
})


def is_rate_limited(error: BaseException) -> bool:
    """True when the store asked us to slow down."""
    if not isinstance(error, StoreError):
        return False
    return error.status in RATE_LIMIT_STATUSES or error.reason in RATE_LIMIT_REASONS


def store_retry_after(error: BaseException) -> float | None:
    if isinstance(error, StoreError):
        return error.retry_after
    return None


def sheet_retry_policy(
    settings: Settings,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryPolicy:
    """Retry policy for sheet calls: rate-limit signals only."""
    return RetryPolicy(
        max_attempts=settings.sheets_max_retries,
        base_delay=settings.sheets_base_delay_ms / 1000,
        jitter_max=settings.sheets_jitter_ms / 1000,
        is_retryable=is_rate_limited,
        retry_after=store_retry_after,
        min_retry_after=settings.sheets_min_retry_after_ms / 1000,
        name="sheets",
        sleep=sleep,
    )


class RemoteCaller:
    """
    Runs store calls through the retry policy, then applies the throttle.

    The throttle is a fixed pause after every successful call that keeps the
    pass under the store's request-rate ceiling; it is not an error reaction.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        throttle_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy
        self.throttle_seconds = throttle_seconds
        self._sleep = sleep
        self.call_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "RemoteCaller":
        return cls(
            sheet_retry_policy(settings, sleep=sleep),
            throttle_seconds=settings.sheets_throttle_ms / 1000,
            sleep=sleep,
        )

    async def __call__(
        self,
        operation: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        policy = replace(self.policy, name=operation)
        result = await policy.call(fn, *args, **kwargs)
        self.call_count += 1
        if self.throttle_seconds:
            await self._sleep(self.throttle_seconds)
        return result
