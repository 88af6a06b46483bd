from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from salonbot.api import booking, health
from salonbot.core.circuit_breaker import set_notification_callback
from salonbot.core.config import Settings, settings as default_settings
from salonbot.core.errors import capture_message, init_sentry
from salonbot.core.kv_store import KeyValueStore, build_store
from salonbot.core.logging_config import get_logger
from salonbot.middleware.context import RequestContextMiddleware
from salonbot.scraper.booking_api import BookingSiteAPI
from salonbot.services.booking import BookingService

logger = get_logger(__name__)


def _report_circuit_change(name: str, old_state: str, new_state: str) -> None:
    level = "warning" if new_state == "open" else "info"
    capture_message(f"Circuit {name}: {old_state} -> {new_state}", level=level, context={"circuit": name})


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    api: Optional[BookingSiteAPI] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
        set_notification_callback(_report_circuit_change)

        app.state.store = store or build_store(settings)
        app.state.booking_service = BookingService(
            app.state.store,
            api or BookingSiteAPI.from_settings(settings),
            settings,
        )
        logger.info(
            "booking service ready",
            kv_backend=settings.KV_BACKEND,
            catalog_source=settings.CATALOG_SOURCE,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
        )
        try:
            yield
        finally:
            if settings.CATALOG_SOURCE == "browser":
                from salonbot.scraper.browser import BrowserManager

                await BrowserManager.close()
            set_notification_callback(None)
            logger.info("booking service stopped")

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(booking.router, prefix=f"{settings.API_V1_STR}/booking", tags=["booking"])
    return app


app = create_app()
