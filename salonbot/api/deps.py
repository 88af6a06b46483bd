from fastapi import Request

from salonbot.services.booking import BookingService


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service
