"""
Unit tests for RetryPolicy.
"""

import asyncio

import pytest

from voiceturn.exceptions import DeviceUnavailable, NoSpeechDetected
from voiceturn.retry import BackoffKind, RetryPolicy


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestRetryPolicy:
    """Tests for delay computation and the run loop."""

    def test_linear_delays(self):
        policy = RetryPolicy.linear(5, 0.5)
        assert policy.backoff is BackoffKind.LINEAR
        assert [policy.delay_for(n) for n in range(1, 5)] == [0.5, 1.0, 1.5, 2.0]

    def test_constant_delays(self):
        policy = RetryPolicy.constant(3, 1.0)
        assert [policy.delay_for(n) for n in (1, 2)] == [1.0, 1.0]

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_should_retry_filters(self):
        policy = RetryPolicy(
            max_attempts=3, retry_on=(DeviceUnavailable,), give_up_on=(NoSpeechDetected,)
        )
        assert policy.should_retry(DeviceUnavailable("x"), 1)
        assert not policy.should_retry(DeviceUnavailable("x"), 3)
        assert not policy.should_retry(ValueError("x"), 1)
        assert not policy.should_retry(NoSpeechDetected("x"), 1)

    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self):
        sleep = SleepRecorder()
        attempts = []

        async def operation(n):
            attempts.append(n)
            if n < 3:
                raise RuntimeError("busy")
            return "ok"

        retried = []
        result = await RetryPolicy.linear(5, 0.5).run(
            operation, on_retry=lambda n, e, d: retried.append((n, d)), sleep=sleep
        )

        assert result == "ok"
        assert attempts == [1, 2, 3]
        assert sleep.delays == [0.5, 1.0]
        assert retried == [(1, 0.5), (2, 1.0)]

    @pytest.mark.asyncio
    async def test_exhausted_raises_last_error(self):
        sleep = SleepRecorder()

        async def operation(n):
            raise RuntimeError(f"attempt {n}")

        with pytest.raises(RuntimeError, match="attempt 3"):
            await RetryPolicy.constant(3, 1.0).run(operation, sleep=sleep)
        assert sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        sleep = SleepRecorder()

        async def operation(n):
            raise ValueError("fatal")

        policy = RetryPolicy.constant(3, 1.0, retry_on=(DeviceUnavailable,))
        with pytest.raises(ValueError):
            await policy.run(operation, sleep=sleep)
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_cancellation_not_retried(self):
        sleep = SleepRecorder()

        async def operation(n):
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await RetryPolicy.constant(3, 0).run(operation, sleep=sleep)
        assert sleep.delays == []
