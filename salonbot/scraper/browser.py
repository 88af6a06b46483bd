# Use pydoll for undetected browser automation
from pydoll.browser.chromium.chrome import Chrome
from pydoll.browser.options import ChromiumOptions
from bs4 import BeautifulSoup
from pydantic import ValidationError
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
import asyncio
import glob
import json
import os
import shutil
import tempfile
import zlib

from salonbot.core.cancellation import CancellationToken
from salonbot.core.config import settings
from salonbot.core.errors import ErrorHandler
from salonbot.core.exceptions import UpstreamError
from salonbot.core.logging_config import get_logger
from salonbot.schemas import ServiceItem

logger = get_logger(__name__)

# Serialize browser operations - only 1 tab at a time for stability
_semaphore = asyncio.Semaphore(1)

IS_CONTAINER = os.path.exists("/.dockerenv")


def find_chrome_binary() -> Optional[str]:
    """Find a Chrome/Chromium binary: CHROME_PATH, common install paths, then PATH."""
    chrome_path = os.getenv("CHROME_PATH")
    if chrome_path and os.path.exists(chrome_path):
        return chrome_path

    common_paths = [
        "/usr/bin/google-chrome-stable",
        "/usr/bin/google-chrome",
        "/opt/google/chrome/google-chrome",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/snap/bin/chromium",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",  # macOS
    ]
    for path in common_paths:
        if os.path.exists(path):
            return path

    matches = glob.glob("/nix/store/*/bin/chromium")
    if matches:
        return matches[0]

    for cmd in ["chromium", "chromium-browser", "google-chrome", "google-chrome-stable"]:
        found = shutil.which(cmd)
        if found:
            return found

    logger.warning("no Chrome binary found")
    return None


def get_user_data_dir() -> str:
    """Unique profile directory for this process."""
    return os.path.join(tempfile.gettempdir(), f"salonbot_profile_{os.getpid()}")


class BrowserManager:
    _browser: Optional[Chrome] = None
    _lock = asyncio.Lock()
    _startup_timeout: int = settings.BROWSER_STARTUP_TIMEOUT_SECONDS

    @classmethod
    def _options(cls) -> ChromiumOptions:
        options = ChromiumOptions()
        options.headless = True

        chrome_path = find_chrome_binary()
        if chrome_path:
            options.binary_location = chrome_path

        # Essential args for headless Chrome in containers
        for arg in (
            "--no-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--disable-blink-features=AutomationControlled",
            "--disable-extensions",
        ):
            options.add_argument(arg)

        if IS_CONTAINER:
            options.add_argument("--disable-setuid-sandbox")
            options.add_argument("--renderer-process-limit=1")
            options.add_argument("--mute-audio")

        options.add_argument(f"--user-data-dir={get_user_data_dir()}")
        return options

    @classmethod
    async def get_browser(cls) -> Chrome:
        async with cls._lock:
            if not cls._browser:
                logger.info("starting browser", container=IS_CONTAINER)
                browser = Chrome(options=cls._options())
                try:
                    await asyncio.wait_for(browser.start(), timeout=cls._startup_timeout)
                except asyncio.TimeoutError:
                    with ErrorHandler("browser_stop_after_failed_start"):
                        await browser.stop()
                    raise UpstreamError(f"browser startup timed out after {cls._startup_timeout}s", upstream="browser")
                except Exception as e:
                    with ErrorHandler("browser_stop_after_failed_start"):
                        await browser.stop()
                    raise UpstreamError(f"browser start failed: {type(e).__name__}: {e}", upstream="browser") from e
                cls._browser = browser
                logger.info("browser started")

            return cls._browser

    @classmethod
    async def close(cls):
        async with cls._lock:
            if cls._browser:
                with ErrorHandler("browser_stop"):
                    await cls._browser.stop()
                cls._browser = None


@asynccontextmanager
async def browser_session(token: CancellationToken) -> AsyncIterator[Any]:
    """
    Open one browser tab for the duration of the block.

    The tab is closed on every exit path: normal return, exception, task
    cancellation, and a fired cancellation token (the deadline path). If
    the tab cannot be closed the whole browser is stopped so no orphaned
    page keeps running.
    """
    async with _semaphore:
        token.raise_if_cancelled()
        browser = await BrowserManager.get_browser()
        tab = await browser.new_tab()
        closed = False

        async def teardown() -> None:
            nonlocal closed
            if closed:
                return
            closed = True
            try:
                await tab.close()
            except Exception as e:
                logger.warning("tab close failed, stopping browser", error=str(e))
                await BrowserManager.close()

        token.add_callback(teardown)
        try:
            yield tab
        finally:
            token.remove_callback(teardown)
            await teardown()


def _offer_id(sku: Any, name: str) -> int:
    # Non-numeric SKUs get the same stable name-derived id as missing ones
    if sku is not None and str(sku).strip().isdigit():
        return int(str(sku).strip())
    return zlib.crc32(name.encode())


def _parse_offer(offer: Any) -> Optional[ServiceItem]:
    """One schema.org Offer as a ServiceItem, or None when it is unusable."""
    if not isinstance(offer, dict):
        return None
    item = offer.get("itemOffered")
    if not isinstance(item, dict):
        return None
    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    name = name.strip()

    price = offer.get("price")
    try:
        return ServiceItem(
            id=_offer_id(offer.get("sku"), name),
            name=name,
            price=f"${price}" if price not in (None, "") else None,
            description=item.get("description") or "",
        )
    except ValidationError as e:
        logger.warning("skipping malformed offer", name=name, error=str(e))
        return None


def parse_json_ld_services(html: str) -> list[ServiceItem]:
    """
    Read schema.org offers embedded as JSON-LD in the booking page.

    Only the structured data the page publishes is used; nothing here
    depends on the page's visual markup. Offers that cannot be read are
    skipped rather than failing the whole catalog.
    """
    soup = BeautifulSoup(html, "html.parser")
    services: list[ServiceItem] = []

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue

        for node in data if isinstance(data, list) else [data]:
            catalog = node.get("hasOfferCatalog") if isinstance(node, dict) else None
            offers = catalog.get("itemListElement") if isinstance(catalog, dict) else None
            if not isinstance(offers, list):
                continue
            for offer in offers:
                service = _parse_offer(offer)
                if service is not None:
                    services.append(service)
    return services


async def scrape_service_catalog(url: str, token: CancellationToken) -> list[ServiceItem]:
    """Load the booking page in the browser and extract its service catalog."""
    async with browser_session(token) as tab:
        await tab.go_to(url)
        token.raise_if_cancelled()
        html = await tab.page_source

    if not html or len(html) < 100:
        raise UpstreamError("empty or invalid page content received", upstream="browser")

    services = parse_json_ld_services(html)
    logger.info("scraped service catalog", count=len(services))
    return services
