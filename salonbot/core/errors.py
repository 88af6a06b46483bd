"""
Error reporting: structlog always, Sentry when a DSN is configured.

The booking site has no SLA, so its failures are routine. They are
reported at warning level and grouped per chain and error type
(``report_upstream_failure``); only failures of our own code reach error
level.

Usage:
    report_upstream_failure(exc, chain="catalog", key="services", upstream="booking_site")

    capture_message("Circuit booking_site: closed -> open", level="warning")

    with ErrorHandler("close_browser_tab", context={"url": url}):
        await tab.close()
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from salonbot.core.context import get_context_dict, get_conversation_id, get_request_id
from salonbot.core.logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "capture_exception",
    "capture_message",
    "report_upstream_failure",
    "ErrorHandler",
]

_sentry_enabled = False


def init_sentry(dsn: str, environment: str = "production", traces_sample_rate: float = 0.0) -> bool:
    """Start the Sentry client; returns False (and reports nothing) without a DSN."""
    global _sentry_enabled

    if not dsn:
        logger.info("sentry disabled, no DSN")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("sentry init failed", error=str(e))
        return False

    _sentry_enabled = True
    logger.info("sentry enabled", environment=environment)
    return True


def is_sentry_enabled() -> bool:
    return _sentry_enabled


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    # Health checks poll constantly; their errors are visible on /health/circuits
    if "/health" in event.get("request", {}).get("url", ""):
        return None

    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id
    conversation_id = get_conversation_id()
    if conversation_id:
        event.setdefault("user", {})["id"] = conversation_id
    return event


def _report_context(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        **get_context_dict(),
        "reported_at": datetime.now(timezone.utc).isoformat(),
        **(context or {}),
    }


def _log(level: str, event: str, fields: Dict[str, Any]) -> None:
    getattr(logger, level, logger.error)(event, **fields)


def _send(level: str, fields: Dict[str, Any], fingerprint: Optional[list[str]], send) -> Optional[str]:
    if not _sentry_enabled:
        return None
    try:
        with sentry_sdk.new_scope() as scope:
            scope.level = level
            if fingerprint:
                scope.fingerprint = fingerprint
            for name, value in fields.items():
                if value is not None:
                    scope.set_extra(name, value)
            return send()
    except Exception as e:
        logger.warning("sentry send failed", error=str(e))
        return None


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
) -> Optional[str]:
    """
    Log exc with the request context and forward it to Sentry.

    Returns the Sentry event id, or None when Sentry is off.
    """
    fields = _report_context({"error_type": type(exc).__name__, **(context or {})})
    _log(level, "exception captured", {"error": str(exc), **fields})
    return _send(level, fields, fingerprint, lambda: sentry_sdk.capture_exception(exc))


def capture_message(message: str, level: str = "info", context: Optional[Dict[str, Any]] = None) -> Optional[str]:
    fields = _report_context(context)
    _log(level, message, fields)
    return _send(level, fields, None, lambda: sentry_sdk.capture_message(message, level=level))


def report_upstream_failure(exc: BaseException, chain: str, key: str, upstream: str) -> Optional[str]:
    """A fetch that will be answered from cache or static data instead."""
    return capture_exception(
        exc,
        context={"chain": chain, "key": key, "upstream": upstream},
        level="warning",
        fingerprint=["upstream_fetch", chain, type(exc).__name__],
    )


class ErrorHandler:
    """
    Capture and suppress Exceptions raised inside the block.

    Meant for teardown steps (closing a tab, stopping a browser) whose
    failure must not replace the outcome the caller is already handling.
    BaseExceptions such as CancelledError always propagate.
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        level: str = "warning",
        reraise: bool = False,
    ):
        self.operation = operation
        self.context = context or {}
        self.level = level
        self.reraise = reraise
        self.event_id: Optional[str] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if not isinstance(exc_val, Exception):
            return False

        self.event_id = capture_exception(
            exc_val,
            context={"operation": self.operation, **self.context},
            level=self.level,
            fingerprint=[self.operation, type(exc_val).__name__],
        )
        return not self.reraise
