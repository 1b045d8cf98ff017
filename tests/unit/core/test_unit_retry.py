# tests/unit/core/test_unit_retry.py — v1
"""Tests for core/retry.py and the error taxonomy in core/errors.py."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from mediaindex.core.errors import (
    MalformedRecord,
    RateLimited,
    RetryExhausted,
    StoreError,
    WorkerInitTimeout,
)
from mediaindex.core.retry import RetryPolicy, classify_error

FAST = RetryPolicy(max_attempts=3, base_delay_s=0, jitter=False)


class TestClassifyError:
    def test_rate_limit(self):
        assert classify_error(RateLimited("/x", 2.0)) == "rate_limit"

    def test_timeout(self):
        assert classify_error(httpx.ReadTimeout("slow")) == "timeout"

    def test_store_errors(self):
        assert classify_error(StoreError("GET", "/x", 503)) == "server_error"
        assert classify_error(StoreError("GET", "/x", 403)) == "client_error"

    def test_malformed(self):
        assert classify_error(MalformedRecord("/x", "bad json")) == "malformed"


class TestComputeDelay:
    def test_exponential(self):
        policy = RetryPolicy(base_delay_s=1.0, jitter=False)
        assert policy.compute_delay(0) == 1.0
        assert policy.compute_delay(2) == 4.0

    def test_capped(self):
        policy = RetryPolicy(base_delay_s=10.0, max_delay_s=15.0, jitter=False)
        assert policy.compute_delay(3) == 15.0

    def test_retry_after_wins(self):
        policy = RetryPolicy(base_delay_s=1.0, jitter=False)
        assert policy.compute_delay(0, RateLimited("/x", retry_after=7)) == 7


class TestRun:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        fn = AsyncMock(side_effect=[StoreError("GET", "/x", 500), "ok"])
        assert await FAST.run(fn, operation="read") == "ok"
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted(self):
        fn = AsyncMock(side_effect=StoreError("GET", "/x", 502))
        with pytest.raises(RetryExhausted) as exc_info:
            await FAST.run(fn, operation="read")
        assert exc_info.value.attempts == 3
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self):
        fn = AsyncMock(side_effect=StoreError("PUT", "/x", 403))
        with pytest.raises(StoreError):
            await FAST.run(fn, operation="write")
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_all(self):
        fn = AsyncMock(side_effect=[ValueError("boom"), "ok"])
        assert await FAST.run(fn, operation="upload", retry_all=True) == "ok"


class TestErrors:
    def test_worker_init_timeout_message(self):
        assert "initialization timeout" in str(WorkerInitTimeout("scan-worker-1", 10))

    def test_store_error_retryable(self):
        assert StoreError("GET", "/x", None).retryable
        assert not StoreError("GET", "/x", 404).retryable
