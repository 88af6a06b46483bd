"""
Cancellation tokens for upstream fetches.

A fetch that times out must release what it holds (browser tab, browser
process, HTTP connection) before the caller moves on to cache/fallback.
Cancelling the asyncio task is not enough on its own: a fetch may be stuck
in a call that ignores cancellation, or may have handed the resource to
another task. So every fetch receives a CancellationToken and registers a
teardown callback for each resource it opens; on timeout the token fires
those callbacks and the deadline helper waits for them.

Usage:
    async def fetch(token: CancellationToken) -> list[dict]:
        async with httpx.AsyncClient() as client:
            token.add_callback(client.aclose)
            ...

    data = await run_with_deadline(fetch, timeout=15.0)
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, TypeVar

from salonbot.core.errors import ErrorHandler
from salonbot.core.exceptions import FetchCancelledError, UpstreamTimeoutError
from salonbot.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Teardown = Callable[[], Any]  # sync or async, return value ignored


class CancellationToken:
    def __init__(self) -> None:
        self._callbacks: list[Teardown] = []
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Teardown) -> None:
        """Register a teardown to run if the fetch gets cancelled."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Teardown) -> None:
        """Forget a teardown once the resource was released normally."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise FetchCancelledError(f"fetch cancelled: {self.reason}")

    async def cancel(self, reason: str = "cancelled") -> None:
        """Fire every registered teardown, newest first. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason

        callbacks, self._callbacks = list(reversed(self._callbacks)), []
        for callback in callbacks:
            with ErrorHandler("cancel_teardown", context={"reason": reason}):
                result = callback()
                if inspect.isawaitable(result):
                    await result


FetchFn = Callable[[CancellationToken], Awaitable[T]]


async def run_with_deadline(
    fetch_fn: FetchFn[T],
    timeout: Optional[float],
    token: Optional[CancellationToken] = None,
    upstream: Optional[str] = None,
) -> T:
    """
    Run fetch_fn(token) and give up after timeout seconds.

    On timeout the fetch task is cancelled and the token fires, so every
    registered resource is torn down before UpstreamTimeoutError is raised.
    timeout=None means no deadline (the fetch bounds itself). Errors raised
    by the fetch itself, a TimeoutError of its own included, propagate
    unchanged and do not fire the token.
    """
    token = token or CancellationToken()
    task = asyncio.ensure_future(fetch_fn(token))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        # The caller itself was cancelled; still release the fetch's resources
        task.cancel()
        await token.cancel("caller cancelled")
        raise

    if task in done:
        return task.result()

    logger.warning("upstream fetch deadline exceeded", upstream=upstream, timeout=timeout)
    task.cancel()
    await token.cancel("timeout")
    await asyncio.wait({task})
    raise UpstreamTimeoutError(timeout, upstream=upstream)
