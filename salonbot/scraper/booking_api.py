"""
Upstream fetchers for the booking site's customer JSON API.

The booking site publishes no official API or SLA; these are the endpoints
its own web client uses. Every call here is an Upstream Fetcher for the
fallback chain: it takes a CancellationToken, registers the HTTP client's
teardown on it, and either returns parsed data or raises UpstreamError.
"""

from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Any, AsyncIterator, Optional

import httpx

from salonbot.core.cancellation import CancellationToken
from salonbot.core.exceptions import UpstreamError
from salonbot.core.logging_config import get_logger
from salonbot.schemas import BusinessInfo, DaySlots, ServiceItem, StaffMember

logger = get_logger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.6 Safari/605.1.15"
)


def _format_price(raw: Any) -> Optional[str]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        return f"${raw:g}"
    return str(raw)


def parse_services(business: dict) -> list[ServiceItem]:
    """Flatten service_categories into ServiceItems with staff names resolved."""
    staff_names = {s.get("id"): s.get("name", "") for s in business.get("staff") or []}
    services: list[ServiceItem] = []

    for category in business.get("service_categories") or []:
        for service in category.get("services") or []:
            variants = service.get("variants") or [{}]
            first = variants[0]
            staff_ids = [sid for sid in service.get("staffer_id") or [] if isinstance(sid, int)]
            services.append(
                ServiceItem(
                    id=service["id"],
                    name=service.get("name", "").strip(),
                    price=_format_price(first.get("service_price") or service.get("price")),
                    duration_minutes=first.get("duration"),
                    category=category.get("name") or "General",
                    description=service.get("description") or "",
                    staff=[staff_names[sid] for sid in staff_ids if staff_names.get(sid)],
                    variant_id=first.get("id"),
                    staff_ids=staff_ids,
                )
            )
    return services


def parse_business(business: dict, booking_url: str) -> BusinessInfo:
    location = business.get("location") or {}
    return BusinessInfo(
        id=business["id"],
        name=business.get("name", ""),
        address=location.get("address", "") if isinstance(location, dict) else str(location),
        phone=business.get("phone") or "",
        booking_url=booking_url,
        staff=[StaffMember(id=s["id"], name=s.get("name", "")) for s in business.get("staff") or [] if "id" in s],
    )


def parse_time_slots(payload: dict) -> list[DaySlots]:
    days = []
    for day in payload.get("time_slots") or []:
        day_date = date.fromisoformat(day["date"])
        days.append(
            DaySlots(
                date=day["date"],
                day_of_week=day_date.strftime("%A"),
                slots=[slot["t"] for slot in day.get("slots") or [] if "t" in slot],
            )
        )
    return days


class BookingSiteAPI:
    def __init__(
        self,
        base_url: str,
        business_id: int,
        staffer_id: int,
        api_key: str = "",
        access_token: str = "",
        fingerprint: str = "",
        booking_url: str = "",
        window_days: int = 14,
        request_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.business_id = business_id
        self.staffer_id = staffer_id
        self.booking_url = booking_url
        self.window_days = window_days
        self.request_timeout = request_timeout
        self._transport = transport
        self._headers = {
            "Accept": "application/json",
            "X-Api-Key": api_key,
            "X-Access-Token": access_token,
            "X-Fingerprint": fingerprint,
            "User-Agent": BROWSER_USER_AGENT,
            "Referer": "https://booksy.com/",
            "Origin": "https://booksy.com",
        }

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "BookingSiteAPI":
        return cls(
            base_url=settings.BOOKING_API_BASE,
            business_id=settings.BUSINESS_ID,
            staffer_id=settings.STAFFER_ID,
            api_key=settings.BOOKING_API_KEY,
            access_token=settings.BOOKING_ACCESS_TOKEN,
            fingerprint=settings.BOOKING_FINGERPRINT,
            booking_url=settings.BOOKING_PAGE_URL,
            window_days=settings.AVAILABILITY_WINDOW_DAYS,
            transport=transport,
        )

    @asynccontextmanager
    async def _client(self, token: CancellationToken) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self.request_timeout,
            transport=self._transport,
        ) as client:
            token.add_callback(client.aclose)
            try:
                yield client
            finally:
                token.remove_callback(client.aclose)

    async def _request(self, token: CancellationToken, method: str, path: str, **kwargs) -> dict:
        token.raise_if_cancelled()
        async with self._client(token) as client:
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                raise UpstreamError(f"{method} {path} returned {e.response.status_code}", upstream="booking_site") from e
            except httpx.HTTPError as e:
                raise UpstreamError(f"{method} {path} failed: {type(e).__name__}", upstream="booking_site") from e
            except ValueError as e:
                raise UpstreamError(f"{method} {path} returned invalid JSON", upstream="booking_site") from e

    async def _business_payload(self, token: CancellationToken) -> dict:
        data = await self._request(token, "GET", f"/businesses/{self.business_id}/")
        business = data.get("business") if isinstance(data, dict) else None
        if not isinstance(business, dict):
            raise UpstreamError("business payload missing", upstream="booking_site")
        return business

    async def fetch_services(self, token: CancellationToken) -> list[ServiceItem]:
        business = await self._business_payload(token)
        try:
            services = parse_services(business)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamError(f"unexpected service catalog shape: {e}", upstream="booking_site") from e
        logger.info("fetched service catalog", count=len(services))
        return services

    async def fetch_business(self, token: CancellationToken) -> BusinessInfo:
        business = await self._business_payload(token)
        try:
            return parse_business(business, self.booking_url)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamError(f"unexpected business shape: {e}", upstream="booking_site") from e

    async def fetch_time_slots(self, variant_id: int, token: CancellationToken) -> list[DaySlots]:
        start = date.today()
        payload = {
            "subbookings": [
                {
                    "service_variant_id": variant_id,
                    "staffer_id": self.staffer_id,
                    "combo_children": [],
                }
            ],
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=self.window_days)).isoformat(),
        }
        data = await self._request(
            token,
            "POST",
            f"/businesses/{self.business_id}/appointments/time_slots",
            json=payload,
        )
        try:
            days = parse_time_slots(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamError(f"unexpected time slot shape: {e}", upstream="booking_site") from e
        logger.info("fetched time slots", variant_id=variant_id, days=len(days))
        return days
