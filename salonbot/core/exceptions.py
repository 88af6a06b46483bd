"""
Failure taxonomy for upstream fetches.

Every class here is an ``UpstreamError``: the fallback chain records each of
them against the circuit breaker and degrades to cache or static data.
None of them ever escapes ``FallbackChain.resolve()``.
"""

from typing import Optional

__all__ = [
    "UpstreamError",
    "UpstreamTimeoutError",
    "DegenerateResultError",
    "RetryExhaustedError",
    "FetchCancelledError",
]


class UpstreamError(Exception):
    """The upstream fetcher failed (exception, bad status, unusable payload)."""

    def __init__(self, message: str, *, upstream: Optional[str] = None):
        super().__init__(message)
        self.upstream = upstream


class UpstreamTimeoutError(UpstreamError):
    """The fetch did not complete within its deadline."""

    def __init__(self, timeout: Optional[float] = None, *, upstream: Optional[str] = None):
        detail = f" after {timeout:g}s" if timeout is not None else ""
        super().__init__(f"upstream fetch timed out{detail}", upstream=upstream)
        self.timeout = timeout


class DegenerateResultError(UpstreamError):
    """
    The fetch returned without error but the result is implausibly small.

    Usually the page changed shape or the scrape landed on the wrong state,
    so it counts as a failure rather than a success.
    """

    def __init__(self, message: str = "result below minimum viable size", *, upstream: Optional[str] = None):
        super().__init__(message, upstream=upstream)


class RetryExhaustedError(UpstreamError):
    """Every attempt of a bounded retry failed; ``__cause__`` is the last error."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        detail = f": {type(last_error).__name__}: {last_error}" if last_error else ""
        super().__init__(f"operation failed after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


class FetchCancelledError(UpstreamError):
    """The fetch noticed its cancellation token had fired."""
