"""
Unit tests for exponential backoff
"""

import pytest

from core.config import RetryConfig
from core.exceptions import (
    RetryExhaustedError,
    SourceConnectionError,
    SourceQueryError,
    TargetConnectionError,
)
from core.retry import BackoffPolicy, retry_async


class Recorder:
    def __init__(self):
        self.delays = []

    async def sleep(self, delay):
        self.delays.append(delay)


def flaky(failures, error_factory, result="ok"):
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error_factory()
        return result

    return operation, calls


class TestBackoffPolicy:

    def test_from_config(self):
        policy = BackoffPolicy.from_config(RetryConfig(max_retries=3, initial_backoff_ms=500, max_backoff_ms=4000))
        assert policy.max_attempts == 4
        assert policy.initial_interval == 0.5
        assert policy.max_interval == 4.0

    def test_delay_is_capped(self):
        policy = BackoffPolicy(initial_interval=1.0, max_interval=5.0, multiplier=2.0)
        assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestRetryAsync:

    @pytest.mark.asyncio
    async def test_retries_connection_errors_then_succeeds(self):
        recorder = Recorder()
        operation, calls = flaky(2, lambda: SourceConnectionError("connection refused"))
        policy = BackoffPolicy(max_attempts=4, initial_interval=1.0, jitter=False)

        result = await retry_async(operation, policy, "fetch", sleep=recorder.sleep)

        assert result == "ok"
        assert calls["count"] == 3
        assert recorder.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_query_errors_are_not_retried(self):
        recorder = Recorder()
        operation, calls = flaky(1, lambda: SourceQueryError("orders", "syntax error"))

        with pytest.raises(SourceQueryError):
            await retry_async(operation, BackoffPolicy(jitter=False), "fetch", sleep=recorder.sleep)

        assert calls["count"] == 1
        assert recorder.delays == []

    @pytest.mark.asyncio
    async def test_exhausted(self):
        recorder = Recorder()
        operation, calls = flaky(10, lambda: TargetConnectionError("unreachable"))
        policy = BackoffPolicy(max_attempts=3, jitter=False)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_async(operation, policy, "upsert", sleep=recorder.sleep)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, TargetConnectionError)
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_no_retry_policy_raises_original_error(self):
        operation, calls = flaky(1, lambda: SourceConnectionError("down"))

        with pytest.raises(SourceConnectionError):
            await retry_async(operation, BackoffPolicy.no_retry(), "ping")

        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_jitter_stays_within_delay(self):
        recorder = Recorder()
        operation, _ = flaky(3, lambda: SourceConnectionError("down"))
        policy = BackoffPolicy(max_attempts=5, initial_interval=2.0, jitter=True)

        await retry_async(operation, policy, "fetch", sleep=recorder.sleep)

        for n, delay in enumerate(recorder.delays):
            assert 0 <= delay <= policy.delay(n)
