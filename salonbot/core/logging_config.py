"""
Structured logging for the booking service.

structlog renders every event. Standard library loggers (the circuit
breaker's transitions, httpx, uvicorn) go through the same formatter, so
every line of one request shares a format and carries its request id.

    ENVIRONMENT=production   one JSON object per line
    anything else            aligned console output, colourless under pytest

Usage:
    from salonbot.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("catalog resolved", provenance="stale_cache", items=12)
"""

import logging
import os
import sys
from typing import Any

import structlog

IS_PRODUCTION = os.getenv("ENVIRONMENT") == "production"
IS_TEST = "pytest" in sys.modules
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Libraries that log every request or websocket frame at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "pydoll", "websockets", "tenacity")

_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)


def _final_processors() -> list[Any]:
    if IS_PRODUCTION:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=not IS_TEST)]


def configure_logging() -> None:
    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _TIMESTAMPER,
    ]

    structlog.configure(
        processors=pre_chain
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *_final_processors()],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
