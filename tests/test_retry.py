"""
Tests for the bounded retry executor.

Tests cover:
1. Timeout schedule validation and padding
2. Success on first and later attempts
3. Per-attempt timeouts from the schedule
4. Exhaustion raising RetryExhaustedError chained to the last error
"""

import asyncio

import pytest

from salonbot.core.exceptions import RetryExhaustedError, UpstreamError
from salonbot.core.retry import validate_schedule, with_retry


class TestValidateSchedule:
    """Tests for timeout schedule checks."""

    def test_schedule_used_as_is(self):
        assert validate_schedule(2, [12000, 15000]) == [12000, 15000]

    def test_short_schedule_padded_with_last_value(self):
        assert validate_schedule(4, [100, 200]) == [100, 200, 200, 200]

    def test_long_schedule_truncated(self):
        assert validate_schedule(1, [100, 200]) == [100]

    def test_equal_timeouts_allowed(self):
        assert validate_schedule(3, [100, 100, 100]) == [100, 100, 100]

    def test_decreasing_schedule_rejected(self):
        with pytest.raises(ValueError, match="non-decreasing"):
            validate_schedule(2, [15000, 12000])

    def test_empty_schedule_rejected(self):
        with pytest.raises(ValueError):
            validate_schedule(2, [])

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            validate_schedule(2, [0, 100])

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError, match="max_attempts"):
            validate_schedule(0, [100])


class TestWithRetry:
    """Tests for with_retry."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        calls = []

        async def operation():
            calls.append(1)
            return {"services": []}

        assert await with_retry(operation, max_attempts=2, timeout_schedule_ms=[100, 200]) == {"services": []}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_second_attempt_succeeds(self):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                raise UpstreamError("cold start")
            return "ok"

        assert await with_retry(operation, max_attempts=2, timeout_schedule_ms=[100, 200]) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_slow_first_attempt_is_retried(self):
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(10)
            return "ok"

        assert await with_retry(operation, max_attempts=2, timeout_schedule_ms=[50, 200]) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_later_attempt_gets_longer_timeout(self):
        """An operation taking 100ms fails under 50ms but passes under 500ms."""
        calls = []

        async def operation():
            calls.append(1)
            await asyncio.sleep(0.1)
            return "ok"

        assert await with_retry(operation, max_attempts=2, timeout_schedule_ms=[50, 500]) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_exhaustion_raises_retry_exhausted(self):
        calls = []

        async def operation():
            calls.append(1)
            raise UpstreamError(f"attempt {len(calls)} failed")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(operation, max_attempts=3, timeout_schedule_ms=[100])

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "attempt 3 failed"
        assert exc_info.value.__cause__ is exc_info.value.last_error

    @pytest.mark.asyncio
    async def test_exhaustion_after_timeouts(self):
        async def operation():
            await asyncio.sleep(10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await with_retry(operation, max_attempts=2, timeout_schedule_ms=[20, 30])

        assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_retry_exhausted_is_upstream_error(self):
        async def operation():
            raise ValueError("bad")

        with pytest.raises(UpstreamError):
            await with_retry(operation, max_attempts=1, timeout_schedule_ms=[100])

    @pytest.mark.asyncio
    async def test_invalid_schedule_fails_before_calling(self):
        calls = []

        async def operation():
            calls.append(1)

        with pytest.raises(ValueError):
            await with_retry(operation, max_attempts=2, timeout_schedule_ms=[200, 100])
        assert calls == []
