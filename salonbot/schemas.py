from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Booking domain ---


class StaffMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class ServiceItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    price: Optional[str] = None  # display price as the booking site shows it, e.g. "$200"
    duration_minutes: Optional[int] = None
    category: str = "General"
    description: str = ""
    staff: list[str] = Field(default_factory=list)
    variant_id: Optional[int] = None  # needed to query time slots
    staff_ids: list[int] = Field(default_factory=list)


class DaySlots(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str  # YYYY-MM-DD
    day_of_week: str
    slots: list[str] = Field(default_factory=list)  # "HH:MM"

    @property
    def slot_count(self) -> int:
        return len(self.slots)


class BusinessInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    address: str = ""
    phone: str = ""
    booking_url: str = ""
    staff: list[StaffMember] = Field(default_factory=list)
    specialties: list[str] = Field(default_factory=list)


# --- API responses ---


class ResolvedResponse(BaseModel):
    """Fields every booking response carries about where the data came from."""

    source: str  # provenance: fresh_fetch, fresh_cache, stale_cache, static_fallback
    circuit_breaker_active: bool = False
    last_updated: Optional[datetime] = None
    reliability: str = "high"
    booking_url: str = ""


class ServicesResponse(ResolvedResponse):
    services: list[ServiceItem]
    count: int
    staff_filter: Optional[str] = None


class SearchResponse(ResolvedResponse):
    query: str
    services: list[ServiceItem]
    count: int


class AvailabilityResponse(ResolvedResponse):
    service: Optional[ServiceItem] = None
    days: list[DaySlots] = Field(default_factory=list)
    message: Optional[str] = None


class BusinessResponse(ResolvedResponse):
    business: BusinessInfo


class CircuitStatus(BaseModel):
    name: str
    state: str
    consecutive_failures: int
    last_failure_at: Optional[datetime] = None
    retry_at: Optional[str] = None


class CircuitHealthResponse(BaseModel):
    status: str  # ok | critical
    circuits: list[CircuitStatus]
    open_circuits: list[str]
