# src/core/retry.py — v1
"""Retry policy with exponential backoff for remote calls.

One policy object is shared by every remote-store call and by batch uploads.
A ``retry-after`` hint on a rate-limit response overrides the computed delay.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from mediaindex.core.errors import MalformedRecord, RateLimited, RetryExhausted, StoreError

logger = logging.getLogger(__name__)


def classify_error(error: Exception) -> str:
    """Classify an exception into a retry error type."""
    if isinstance(error, RateLimited):
        return "rate_limit"
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(error, httpx.TransportError):
        return "transport"
    if isinstance(error, StoreError):
        return "server_error" if error.retryable else "client_error"
    if isinstance(error, MalformedRecord):
        return "malformed"
    return "unknown"


# Error types that are never retried.
NON_RETRYABLE = frozenset({"client_error", "malformed"})


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_attempts`` counts every try, the first included.
    """

    max_attempts: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    max_delay_s: float = 30.0
    jitter: bool = True

    def compute_delay(self, attempt: int, error: Exception | None = None) -> float:
        """Delay before the retry following ``attempt`` (0-based)."""
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return min(error.retry_after, self.max_delay_s)
        delay = self.base_delay_s * (self.backoff_factor ** attempt)
        if self.jitter:
            delay *= 0.5 + random.random()  # noqa: S311
        return min(delay, self.max_delay_s)

    def is_retryable(self, error: Exception) -> bool:
        return classify_error(error) not in NON_RETRYABLE

    async def run(
        self,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        operation: str = "unknown",
        retry_all: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute an async callable under this policy.

        Args:
            fn: Coroutine function to call.
            operation: Label used in logs and in the exhausted error.
            retry_all: Retry every exception, not only transient ones.

        Raises:
            RetryExhausted: When all attempts failed.
            Exception: Non-retryable errors propagate unchanged.
        """
        attempts = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as e:
                attempts += 1
                if not retry_all and not self.is_retryable(e):
                    raise
                if attempts >= self.max_attempts:
                    raise RetryExhausted(operation, attempts, e) from e

                delay = self.compute_delay(attempts - 1, e)
                logger.warning(
                    "%s: %s (attempt %d/%d), retrying in %.2fs",
                    operation, classify_error(e), attempts, self.max_attempts, delay,
                )
                await asyncio.sleep(delay)
