"""
Time helpers shared by the persisted models and the resilience components.
"""

from datetime import datetime, timezone
from typing import Callable

# Injectable "now" source; tests swap in a controllable clock
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in model fields and as the default Clock.
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes.

    SQLite hands timestamps back without tzinfo even when they were
    written timezone-aware.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
