from typing import Optional

from fastapi import APIRouter, Depends, Query

from salonbot.api.deps import get_booking_service
from salonbot.models.outcome import FetchOutcome
from salonbot.schemas import AvailabilityResponse, BusinessResponse, SearchResponse, ServicesResponse
from salonbot.services.booking import BookingService, reliability

router = APIRouter()


def _provenance_fields(outcome: FetchOutcome, booking_url: str) -> dict:
    return {
        "source": outcome.provenance.value,
        "circuit_breaker_active": outcome.circuit_breaker_active,
        "last_updated": outcome.stored_at,
        "reliability": reliability(outcome),
        "booking_url": booking_url,
    }


@router.get("/services", response_model=ServicesResponse)
async def list_services(
    staff: Optional[str] = Query(default=None, description="Only services offered by this staff member"),
    booking: BookingService = Depends(get_booking_service),
):
    outcome = await booking.get_services(staff_filter=staff)
    return ServicesResponse(
        services=outcome.data,
        count=len(outcome.data),
        staff_filter=staff,
        **_provenance_fields(outcome, booking.booking_url),
    )


@router.get("/search", response_model=SearchResponse)
async def search_services(
    q: str = Query(default="", description="Words to match against service names and descriptions"),
    booking: BookingService = Depends(get_booking_service),
):
    outcome = await booking.search_services(q)
    return SearchResponse(
        query=q,
        services=outcome.data,
        count=len(outcome.data),
        **_provenance_fields(outcome, booking.booking_url),
    )


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    service: str = Query(..., min_length=1, description="Service id or name"),
    booking: BookingService = Depends(get_booking_service),
):
    found, outcome = await booking.get_availability(service)

    message = None
    if found is None:
        message = f"No service matching '{service}'. Book directly at {booking.booking_url}"
    elif not outcome.data:
        message = f"No open times found right now. Check {booking.booking_url} for the latest availability"

    return AvailabilityResponse(
        service=found,
        days=outcome.data,
        message=message,
        **_provenance_fields(outcome, booking.booking_url),
    )


@router.get("/business", response_model=BusinessResponse)
async def get_business(booking: BookingService = Depends(get_booking_service)):
    outcome = await booking.get_business_info()
    return BusinessResponse(business=outcome.data, **_provenance_fields(outcome, booking.booking_url))
