from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Salonbot Booking"
    API_V1_STR: str = "/api/v1"

    # Key-value store shared by every request handler ("memory" or "sql")
    KV_BACKEND: str = "memory"
    DATABASE_URL: str = "sqlite:///./salonbot.db"
    KV_MEMORY_MAXSIZE: int = 1024

    # Circuit breaker (one per upstream dependency)
    CIRCUIT_FAILURE_THRESHOLD: int = 2
    CIRCUIT_COOLDOWN_SECONDS: float = 120.0

    # Tiered cache
    CATALOG_FRESH_TTL_SECONDS: int = 3600  # 1 hour, prices rarely change
    AVAILABILITY_FRESH_TTL_SECONDS: int = 300  # 5 minutes, slots change constantly
    CACHE_HARD_TTL_SECONDS: int = 86400  # stale entries survive a day-long outage
    CACHE_STORE_TIMEOUT_SECONDS: float = 0.5

    # Upstream fetch
    FETCH_TIMEOUT_SECONDS: float = 15.0
    MIN_VIABLE_SERVICES: int = 4  # catalog must have MORE than this many items
    CATALOG_SOURCE: str = "api"  # "api" or "browser"

    # Bounded retry for calls across the internal service boundary
    RETRY_MAX_ATTEMPTS: int = 2
    RETRY_TIMEOUT_SCHEDULE_MS: list[int] = [12000, 15000]

    # Booking site (third party, no SLA)
    BOOKING_API_BASE: str = "https://us.booksy.com/api/us/2/customer_api"
    BOOKING_API_KEY: str = ""
    BOOKING_ACCESS_TOKEN: str = ""
    BOOKING_FINGERPRINT: str = ""
    BUSINESS_ID: int = 155582
    STAFFER_ID: int = 880999
    BOOKING_PAGE_URL: str = (
        "https://booksy.com/en-us/155582_akro-beauty-by-la-morocha-makeup_hair-salon_134763_orlando/staffer/880999"
    )
    AVAILABILITY_WINDOW_DAYS: int = 14

    # Booking HTTP service as seen from the chat layer
    BOOKING_SERVICE_URL: str = "http://localhost:8000/api/v1/booking"
    USER_AGENT: str = "Salonbot-WhatsApp/1.0"

    # Browser automation
    BROWSER_STARTUP_TIMEOUT_SECONDS: int = 60

    # Error tracking
    SENTRY_DSN: str = ""
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
