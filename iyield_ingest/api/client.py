"""
HTTP client with retry logic for data-provider requests.
"""
import asyncio
import json
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

import httpx
import structlog

from iyield_ingest.config import Settings
from iyield_ingest.exceptions import FetchError
from iyield_ingest.utils.retry import RetryPolicy

logger = structlog.get_logger()

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
BODY_SNIPPET_CHARS = 200


class RetryableStatusError(Exception):
    """A response whose status asks the caller to try again later."""

    def __init__(self, status: int, url: str, retry_after: float | None = None):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.url = url
        self.retry_after = retry_after


def parse_retry_after(value: str | None) -> float | None:
    """
    Convert a Retry-After header to seconds.

    Accepts delta-seconds or an HTTP date; returns None when absent or
    unparseable.
    """
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def is_retryable_fetch_error(error: BaseException) -> bool:
    return isinstance(error, (RetryableStatusError, httpx.TransportError))


def _fetch_retry_after(error: BaseException) -> float | None:
    if isinstance(error, RetryableStatusError):
        return error.retry_after
    return None


class FetchClient:
    """Async HTTP client shared by all provider collectors."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._settings = settings
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._request_count = 0
        self._error_count = 0

    async def __aenter__(self) -> "FetchClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.api_timeout_seconds),
            follow_redirects=True,
            transport=self._transport,
            headers={
                "User-Agent": self._settings.user_agent,
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("Fetch client closed", **self.get_stats())

    def policy(
        self,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> RetryPolicy:
        """Retry policy for one fetch; ``base_delay`` is in seconds."""
        if base_delay is None:
            base_delay = self._settings.fetch_base_delay_ms / 1000
        return RetryPolicy(
            max_attempts=max_attempts or self._settings.fetch_max_attempts,
            base_delay=base_delay,
            # per-call overrides may be shorter than the configured jitter
            jitter_max=min(self._settings.fetch_jitter_ms / 1000, base_delay),
            is_retryable=is_retryable_fetch_error,
            retry_after=_fetch_retry_after,
            name="fetch",
            sleep=self._sleep,
        )

    async def _request_once(
        self,
        url: str,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        """Issue one GET and classify the outcome. Does not retry."""
        if not self._client:
            raise RuntimeError("Client not connected. Call connect() first.")

        log = logger.bind(url=url)
        start = time.monotonic()
        self._request_count += 1
        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.TransportError as e:
            self._error_count += 1
            log.warning("Transport error", error=str(e))
            raise

        log.debug(
            "API request completed",
            status=response.status_code,
            latency_ms=round((time.monotonic() - start) * 1000, 2),
        )

        if response.is_success:
            return response

        self._error_count += 1
        status = response.status_code
        if status in RETRYABLE_STATUSES:
            raise RetryableStatusError(
                status,
                url,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        raise FetchError(
            f"HTTP {status} - {response.text[:BODY_SNIPPET_CHARS]}",
            url=url,
            status=status,
        )

    async def fetch(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> httpx.Response:
        """
        GET ``url`` with bounded retries.

        Raises:
            FetchError: On a non-retryable status, or once attempts run out
        """
        policy = self.policy(max_attempts, base_delay)
        try:
            return await policy.call(self._request_once, url, params, headers)
        except (RetryableStatusError, httpx.TransportError) as e:
            raise FetchError(
                f"Failed fetch after retries: {url} :: {e}",
                url=url,
                status=getattr(e, "status", None),
            ) from e

    async def fetch_json(self, url: str, **kwargs: Any) -> Any:
        """GET ``url`` and decode the JSON body."""
        response = await self.fetch(url, **kwargs)
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise FetchError(f"Invalid JSON from {url}: {e}", url=url) from e

    async def fetch_text(self, url: str, **kwargs: Any) -> str:
        """GET ``url`` and return the body as text."""
        response = await self.fetch(url, **kwargs)
        return response.text

    def get_stats(self) -> dict[str, int]:
        """Get client statistics."""
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
        }
