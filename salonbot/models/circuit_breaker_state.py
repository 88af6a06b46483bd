"""
Persisted circuit breaker state.

One record per protected upstream, shared by every request handler through
the key-value store. Writes are read-modify-write without a lock, so the
failure counter is approximate: a lost increment only delays tripping.
"""

from typing import Optional
from datetime import datetime

from sqlmodel import Field, SQLModel


class CircuitBreakerState(SQLModel):
    """Failure streak of one upstream. Absent record == no failures."""

    consecutive_failures: int = Field(default=0, ge=0)
    last_failure_at: Optional[datetime] = Field(default=None)
