"""
Booking data for the chat assistant: services, availability, business info.

Each data category has its own FallbackChain (freshness window and
minimum-viable-result check) and all of them share the circuit breaker of
the booking site, since they fail together when the site is down.
"""

from functools import partial
from typing import Optional

from salonbot.core.circuit_breaker import CircuitBreakerRegistry
from salonbot.core.kv_store import KeyValueStore
from salonbot.core.logging_config import get_logger
from salonbot.core.tiered_cache import TieredCache
from salonbot.core.typing import Clock, utc_now
from salonbot.models.outcome import FetchOutcome, Provenance
from salonbot.schemas import BusinessInfo, DaySlots, ServiceItem
from salonbot.scraper.booking_api import BookingSiteAPI
from salonbot.services import catalog
from salonbot.services.fallback_chain import FallbackChain, min_items

logger = get_logger(__name__)

BOOKING_SITE_CIRCUIT = "booking_site"
SERVICES_KEY = "services"
BUSINESS_KEY = "business"


def availability_key(variant_id: int) -> str:
    return f"timeslots:{variant_id}"


def _has_name(business: Optional[BusinessInfo]) -> bool:
    return business is not None and bool(business.name)


def _is_day_list(days) -> bool:
    # A fully booked fortnight is a legitimate empty answer
    return isinstance(days, list)


def reliability(outcome: FetchOutcome) -> str:
    """Confidence label the chat layer can surface to the client."""
    if outcome.provenance in (Provenance.FRESH_FETCH, Provenance.FRESH_CACHE):
        return "high"
    if outcome.provenance is Provenance.STALE_CACHE:
        return "medium"
    return "low"


def filter_by_staff(services: list[ServiceItem], staff: str) -> list[ServiceItem]:
    needle = staff.strip().lower()
    return [s for s in services if any(needle in name.lower() for name in s.staff)]


def search(services: list[ServiceItem], query: str) -> list[ServiceItem]:
    """Case-insensitive match on every query word against name, category, description."""
    words = [w for w in query.lower().split() if w]
    if not words:
        return list(services)

    def haystack(s: ServiceItem) -> str:
        return f"{s.name} {s.category} {s.description}".lower()

    return [s for s in services if all(w in haystack(s) for w in words)]


def find_service(services: list[ServiceItem], ref: str) -> Optional[ServiceItem]:
    """Find a service by id, exact name, or name fragment (first match)."""
    ref = ref.strip()
    if not ref:
        return None
    lowered = ref.lower()
    for s in services:
        if str(s.id) == ref or (s.variant_id is not None and str(s.variant_id) == ref):
            return s
    for s in services:
        if s.name.lower() == lowered:
            return s
    for s in services:
        if lowered in s.name.lower():
            return s
    return None


class BookingService:
    def __init__(self, store: KeyValueStore, api: BookingSiteAPI, settings, clock: Clock = utc_now):
        self.api = api
        self.settings = settings
        self.booking_url = settings.BOOKING_PAGE_URL

        breaker = CircuitBreakerRegistry.get(
            BOOKING_SITE_CIRCUIT,
            store=store,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
            store_timeout=settings.CACHE_STORE_TIMEOUT_SECONDS,
            clock=clock,
        )
        self.breaker = breaker

        def cache(namespace: str, fresh_ttl: float, value_type) -> TieredCache:
            return TieredCache(
                store,
                namespace,
                fresh_ttl=fresh_ttl,
                hard_ttl=settings.CACHE_HARD_TTL_SECONDS,
                value_type=value_type,
                store_timeout=settings.CACHE_STORE_TIMEOUT_SECONDS,
                clock=clock,
            )

        self.catalog_chain: FallbackChain[list[ServiceItem]] = FallbackChain(
            name="catalog",
            breaker=breaker,
            cache=cache("catalog", settings.CATALOG_FRESH_TTL_SECONDS, list[ServiceItem]),
            fallback=catalog.services_fallback,
            is_viable=min_items(settings.MIN_VIABLE_SERVICES),
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        )
        self.availability_chain: FallbackChain[list[DaySlots]] = FallbackChain(
            name="availability",
            breaker=breaker,
            cache=cache("availability", settings.AVAILABILITY_FRESH_TTL_SECONDS, list[DaySlots]),
            fallback=catalog.availability_fallback,
            is_viable=_is_day_list,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        )
        self.business_chain: FallbackChain[BusinessInfo] = FallbackChain(
            name="business",
            breaker=breaker,
            cache=cache("business", settings.CATALOG_FRESH_TTL_SECONDS, BusinessInfo),
            fallback=catalog.business_fallback,
            is_viable=_has_name,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
        )

    def _catalog_fetcher(self):
        if self.settings.CATALOG_SOURCE == "browser":
            from salonbot.scraper.browser import scrape_service_catalog

            return partial(scrape_service_catalog, self.booking_url)
        return self.api.fetch_services

    async def get_services(self, staff_filter: Optional[str] = None) -> FetchOutcome[list[ServiceItem]]:
        outcome = await self.catalog_chain.resolve(SERVICES_KEY, self._catalog_fetcher())
        if staff_filter:
            outcome = outcome.model_copy(update={"data": filter_by_staff(outcome.data, staff_filter)})
        return outcome

    async def search_services(self, query: str) -> FetchOutcome[list[ServiceItem]]:
        outcome = await self.catalog_chain.resolve(SERVICES_KEY, self._catalog_fetcher())
        return outcome.model_copy(update={"data": search(outcome.data, query)})

    async def get_business_info(self) -> FetchOutcome[BusinessInfo]:
        return await self.business_chain.resolve(BUSINESS_KEY, self.api.fetch_business)

    async def get_availability(self, service_ref: str) -> tuple[Optional[ServiceItem], FetchOutcome[list[DaySlots]]]:
        """
        Time slots for the next days for one service.

        The service is looked up in whatever catalog resolves (live, cached or
        static). Without a variant id there is nothing to query, so the
        static "no availability" answer is returned with its provenance.
        """
        services = await self.get_services()
        service = find_service(services.data, service_ref)

        if service is None or service.variant_id is None:
            logger.info("availability unavailable for service", service_ref=service_ref, found=service is not None)
            return service, FetchOutcome(
                data=catalog.availability_fallback(service_ref),
                provenance=Provenance.STATIC_FALLBACK,
                circuit_breaker_active=services.circuit_breaker_active,
                error="service not found" if service is None else "service has no bookable variant",
            )

        outcome = await self.availability_chain.resolve(
            availability_key(service.variant_id),
            partial(self.api.fetch_time_slots, service.variant_id),
        )
        return service, outcome
