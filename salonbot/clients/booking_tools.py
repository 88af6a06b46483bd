"""
Chat-side client for the booking HTTP service.

The assistant's tool calls (get services, search, booking instructions,
availability) cross an internal service boundary. Each call goes through
the bounded retry executor, and the whole retried call is one fetch in a
FallbackChain with its own breaker, so a slow or cold booking service
degrades to cached or static tool answers instead of stalling the reply.
"""

import hashlib
import json
from functools import partial
from typing import Any, Optional

import httpx

from salonbot.core.cancellation import CancellationToken
from salonbot.core.circuit_breaker import CircuitBreakerRegistry
from salonbot.core.exceptions import UpstreamError
from salonbot.core.kv_store import KeyValueStore
from salonbot.core.logging_config import get_logger
from salonbot.core.retry import with_retry
from salonbot.core.tiered_cache import TieredCache
from salonbot.core.typing import Clock, utc_now
from salonbot.models.outcome import FetchOutcome, Provenance
from salonbot.services import catalog
from salonbot.services.fallback_chain import FallbackChain

logger = get_logger(__name__)

BOOKING_SERVICE_CIRCUIT = "booking_service"

# tool name -> (path, query parameter built from arguments)
TOOL_ENDPOINTS: dict[str, tuple[str, Optional[tuple[str, str]]]] = {
    "get_booksy_services": ("/services", ("staff", "staff")),
    "search_booksy_services": ("/search", ("q", "query")),
    "get_booking_instructions": ("/availability", ("service", "serviceName")),
    "get_availability": ("/availability", ("service", "serviceName")),
}


def _fallback_services() -> list[dict]:
    return [s.model_dump(mode="json") for s in catalog.KNOWN_SERVICES]


def tool_fallback(cache_key: str) -> dict:
    """Static answer for a tool call; the tool name is the key's first segment."""
    function_name = cache_key.split(":", 1)[0]
    booking_url = catalog.BUSINESS_PROFILE.booking_url

    if function_name == "get_booksy_services":
        services = _fallback_services()
        return {"services": services, "count": len(services), "source": "static_fallback", "fallback": True}
    if function_name == "search_booksy_services":
        return {
            "services": _fallback_services(),
            "count": len(catalog.KNOWN_SERVICES),
            "source": "static_fallback",
            "fallback": True,
            "message": "Showing all services; live search is temporarily unavailable.",
        }
    return {
        "days": [],
        "booking_url": booking_url,
        "source": "static_fallback",
        "fallback": True,
        "message": f"Live availability is temporarily unavailable. Book directly at {booking_url}",
    }


def cache_key_for(function_name: str, arguments: dict) -> str:
    digest = hashlib.sha1(json.dumps(arguments, sort_keys=True, default=str).encode()).hexdigest()[:12]
    return f"{function_name}:{digest}"


class BookingToolClient:
    def __init__(
        self,
        base_url: str,
        store: KeyValueStore,
        settings,
        clock: Clock = utc_now,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = settings.RETRY_MAX_ATTEMPTS
        self.timeout_schedule_ms = list(settings.RETRY_TIMEOUT_SCHEDULE_MS)
        self.user_agent = settings.USER_AGENT
        self._transport = transport

        breaker = CircuitBreakerRegistry.get(
            BOOKING_SERVICE_CIRCUIT,
            store=store,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
            store_timeout=settings.CACHE_STORE_TIMEOUT_SECONDS,
            clock=clock,
        )
        self.chain: FallbackChain[dict] = FallbackChain(
            name="booking_tools",
            breaker=breaker,
            cache=TieredCache(
                store,
                "booking_tools",
                fresh_ttl=settings.AVAILABILITY_FRESH_TTL_SECONDS,
                hard_ttl=settings.CACHE_HARD_TTL_SECONDS,
                value_type=dict,
                store_timeout=settings.CACHE_STORE_TIMEOUT_SECONDS,
                clock=clock,
            ),
            fallback=tool_fallback,
            # The retry executor bounds each attempt; no extra outer deadline
            fetch_timeout=None,
        )

    async def _get_once(self, path: str, params: dict[str, str], token: CancellationToken) -> dict:
        token.raise_if_cancelled()
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json", "User-Agent": self.user_agent},
            transport=self._transport,
        ) as client:
            token.add_callback(client.aclose)
            try:
                response = await client.get(path, params=params)
            finally:
                token.remove_callback(client.aclose)

        if response.status_code != 200:
            raise UpstreamError(f"GET {path} returned {response.status_code}", upstream=BOOKING_SERVICE_CIRCUIT)
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"GET {path} returned invalid JSON", upstream=BOOKING_SERVICE_CIRCUIT) from e
        if not isinstance(payload, dict):
            raise UpstreamError(f"GET {path} returned {type(payload).__name__}", upstream=BOOKING_SERVICE_CIRCUIT)
        return payload

    async def _fetch(self, path: str, params: dict[str, str], token: CancellationToken) -> dict:
        return await with_retry(
            partial(self._get_once, path, params, token),
            max_attempts=self.max_attempts,
            timeout_schedule_ms=self.timeout_schedule_ms,
        )

    async def call(self, function_name: str, arguments: Optional[dict[str, Any]] = None) -> FetchOutcome[dict]:
        """
        Execute one assistant tool call.

        Unknown tools produce an error payload; every known tool produces a
        payload from the best available tier.
        """
        arguments = arguments or {}
        endpoint = TOOL_ENDPOINTS.get(function_name)
        if endpoint is None:
            logger.warning("unknown booking tool", function_name=function_name)
            return FetchOutcome(
                data={"error": f"Unknown function: {function_name}"},
                provenance=Provenance.STATIC_FALLBACK,
                error="unknown function",
            )

        path, param = endpoint
        params: dict[str, str] = {}
        if param is not None:
            query_name, argument_name = param
            value = arguments.get(argument_name)
            if value:
                params[query_name] = str(value)

        logger.info("calling booking tool", function_name=function_name, path=path)
        return await self.chain.resolve(
            cache_key_for(function_name, arguments),
            partial(self._fetch, path, params),
        )
