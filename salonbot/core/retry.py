"""
Bounded retry for calls across an internal service boundary.

Each attempt gets its own timeout from a non-decreasing schedule (a second
attempt is given a little more patience, since cold starts and transient
contention are the usual cause of a first failure). Attempts run back to
back: this bounds latency, not request rate.

Not meant for the raw browser scrape, which handles its own timeouts and is
too expensive to repeat blindly.
"""

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt, wait_none

from salonbot.core.exceptions import RetryExhaustedError
from salonbot.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def validate_schedule(max_attempts: int, timeout_schedule_ms: Sequence[int]) -> list[int]:
    """Check a timeout schedule and pad it to max_attempts by repeating the last value."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if not timeout_schedule_ms:
        raise ValueError("timeout_schedule_ms must contain at least one timeout")
    if any(ms <= 0 for ms in timeout_schedule_ms):
        raise ValueError("timeouts must be positive")
    if any(later < earlier for earlier, later in zip(timeout_schedule_ms, timeout_schedule_ms[1:])):
        raise ValueError(f"timeout schedule must be non-decreasing: {list(timeout_schedule_ms)}")

    schedule = list(timeout_schedule_ms[:max_attempts])
    schedule += [schedule[-1]] * (max_attempts - len(schedule))
    return schedule


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying after failed attempt",
        attempt=retry_state.attempt_number,
        error=str(exc),
        error_type=type(exc).__name__ if exc else None,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    timeout_schedule_ms: Sequence[int] = (12000, 15000),
) -> T:
    """
    Run operation() up to max_attempts times.

    Attempt i is cancelled after timeout_schedule_ms[i] milliseconds.

    Raises:
        RetryExhaustedError: every attempt failed; chained to the last error.
        ValueError: the schedule is empty, non-positive or decreasing.
    """
    schedule = validate_schedule(max_attempts, timeout_schedule_ms)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_retry,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                timeout_ms = schedule[attempt.retry_state.attempt_number - 1]
                return await asyncio.wait_for(operation(), timeout=timeout_ms / 1000)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        raise RetryExhaustedError(max_attempts, last_error) from last_error

    raise RetryExhaustedError(max_attempts)  # pragma: no cover
