"""
Key-value rows backing the SQL store.

Breaker state and cache entries live here when KV_BACKEND=sql so every
worker process sees the same values.
"""

from typing import Optional
from datetime import datetime

from sqlalchemy import LargeBinary
from sqlmodel import Column, Field, SQLModel

from salonbot.core.typing import utc_now


class KeyValueEntry(SQLModel, table=True):
    __tablename__ = "kv_entry"

    key: str = Field(primary_key=True, max_length=255)
    value: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    expires_at: Optional[datetime] = Field(default=None, index=True)  # hard expiry, None = never
    updated_at: datetime = Field(default_factory=utc_now)
