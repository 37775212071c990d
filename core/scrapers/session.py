import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.debug import save_page_artifacts
from core.errors import ScraperError, SessionInitError
from core.models import CatalogRecord, ScrapingBehaviorConfig, Store
from core.scrapers.anti_bot import AntiBot

# Chromium flags that hide the most obvious automation fingerprints
LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]

EXTRA_HTTP_HEADERS = {
    "Accept-Language": "nl-BE,nl;q=0.9,en;q=0.8",
    "Accept-Encoding": "gzip, deflate, br",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
    "DNT": "1",
}

# Injected into every context before any page script runs
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined,
    configurable: true
});

Object.defineProperty(navigator, 'plugins', {
    get: () => [1, 2, 3, 4, 5],
    configurable: true
});

Object.defineProperty(navigator, 'languages', {
    get: () => ['nl-BE', 'nl', 'en'],
    configurable: true
});

window.chrome = window.chrome || {};
window.chrome.runtime = window.chrome.runtime || {};

delete window.__playwright;
delete window.__pw_manual;
delete window.__selenium_unwrapped;
delete window.__webdriver_evaluate;
delete window.__driver_evaluate;
"""

BRUSSELS_GEOLOCATION = {"latitude": 50.8503, "longitude": 4.3517}


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    RESET_PENDING = "reset_pending"
    CLOSED = "closed"


class BrowserSession:
    """One store's browser, its active context and page, and its catalog cache.

    A session is created for a single store and never shared. The context can
    be swapped mid-run with reset_context(); the browser itself lives until
    cleanup().
    """

    def __init__(self, playwright: Playwright, store: Store,
                 behavior: Optional[ScrapingBehaviorConfig] = None,
                 aggressive: bool = False,
                 anti_bot: Optional[AntiBot] = None,
                 debug_dir: Optional[str] = None):
        self.playwright = playwright
        self.store = store
        self.behavior = behavior or ScrapingBehaviorConfig()
        self.aggressive = aggressive
        self.anti_bot = anti_bot or AntiBot(self.behavior)
        self.debug_dir = debug_dir
        self.logger = logging.getLogger(f"scraper.{store.name.lower()}")

        self.state = SessionState.UNINITIALIZED
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

        # None until the adapter has loaded the listing pages once
        self.catalog: Optional[List[CatalogRecord]] = None

    def context_options(self) -> Dict[str, Any]:
        """Fingerprint shared by the first context and every replacement."""
        return {
            "user_agent": self.behavior.user_agent,
            "viewport": {"width": 1920, "height": 1080},
            "locale": "nl-BE",
            "timezone_id": "Europe/Brussels",
            "permissions": ["geolocation"],
            "geolocation": BRUSSELS_GEOLOCATION,
            "color_scheme": "light",
            "extra_http_headers": EXTRA_HTTP_HEADERS,
        }

    async def _open_context(self):
        context = await self.browser.new_context(**self.context_options())
        try:
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            page = await context.new_page()
        except PlaywrightError:
            await context.close()
            raise
        return context, page

    async def initialize(self) -> None:
        """Launch Chromium and open the first context.

        Raises:
            SessionInitError: If the browser or its first page cannot be created
        """
        if self.state is not SessionState.UNINITIALIZED:
            raise ScraperError(f"Session for {self.store.name} is already {self.state.value}")

        self.logger.info("Initializing browser for %s...", self.store.name)
        try:
            self.browser = await self.playwright.chromium.launch(
                headless=self.behavior.headless,
                args=LAUNCH_ARGS,
            )
            self.context, self.page = await self._open_context()
        except PlaywrightError as e:
            self.logger.error("Failed to initialize browser for %s: %s", self.store.name, e)
            await self.cleanup()
            raise SessionInitError(self.store.name, str(e)) from e

        self.state = SessionState.ACTIVE
        self.logger.info("Browser initialized for %s", self.store.name)

    async def reset_context(self) -> bool:
        """Swap the active context for a fresh one with the same fingerprint.

        The old context is closed only once the new page answers. On failure
        the current context stays active.

        Returns:
            True if the context was replaced
        """
        if self.state is not SessionState.ACTIVE:
            return False

        self.state = SessionState.RESET_PENDING
        self.logger.info("Resetting browser context for %s...", self.store.name)
        try:
            context, page = await self._open_context()
        except PlaywrightError as e:
            self.logger.warning("Failed to reset context, continuing with current context: %s", e)
            self.state = SessionState.ACTIVE
            return False

        try:
            await page.evaluate("() => document.readyState")
        except PlaywrightError as e:
            self.logger.warning("New context is not usable, continuing with current context: %s", e)
            try:
                await context.close()
            except PlaywrightError as close_error:
                self.logger.warning("Failed to close unusable context: %s", close_error)
            self.state = SessionState.ACTIVE
            return False

        old_context = self.context
        self.context, self.page = context, page
        self.state = SessionState.ACTIVE
        try:
            await old_context.close()
        except PlaywrightError as e:
            self.logger.warning("Failed to close previous context: %s", e)

        self.logger.info("Browser context reset successfully")
        return True

    def _require_page(self) -> Page:
        if self.state is not SessionState.ACTIVE or self.page is None:
            raise ScraperError(f"Session for {self.store.name} is not active")
        return self.page

    async def navigate(self, url: str, wait_for_network_idle: bool = False) -> None:
        """Open a listing URL and behave like a visitor once it has loaded.

        A navigation timeout is logged and whatever has rendered so far is used.
        """
        page = self._require_page()
        self.logger.info("Navigating to %s...", url)

        if self.aggressive:
            await self.anti_bot.long_delay(1500, 3000)

        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.behavior.timeout)
        except PlaywrightTimeoutError:
            self.logger.warning("Navigation timeout for %s, continuing with partial content", url)

        if wait_for_network_idle:
            await self.anti_bot.wait_for_page_load(page)
        else:
            await self.anti_bot.pause(1000)

        await self.anti_bot.handle_cookie_banner(page)
        await self.anti_bot.simulate_mouse_movement(page)
        await self.anti_bot.human_scroll(page)

        if self.aggressive:
            await self.anti_bot.simulate_reading(page)
        else:
            await self.anti_bot.random_delay()

        self.logger.info("Page loaded: %s", url)

    async def navigate_expecting_response(self, url: str, url_fragment: str,
                                          timeout: int = 10000) -> bool:
        """Navigate and wait for a background response whose URL contains url_fragment.

        Returns:
            True if a matching successful response arrived in time
        """
        page = self._require_page()
        try:
            async with page.expect_response(
                lambda response: url_fragment in response.url and response.ok,
                timeout=timeout,
            ):
                await self.navigate(url)
        except PlaywrightTimeoutError:
            self.logger.info("No %s response within %dms", url_fragment, timeout)
            return False
        return True

    async def wait_for_any_selector(self, selectors: Sequence[str],
                                    timeout: int = 5000) -> Optional[str]:
        """Wait for the first candidate selector to attach; None if none does."""
        page = self._require_page()
        for selector in selectors:
            try:
                await page.wait_for_selector(selector, timeout=timeout, state="attached")
                self.logger.info("Product container found with selector: %s", selector)
                return selector
            except PlaywrightError:
                self.logger.debug("Selector %s not found, trying next...", selector)
        self.logger.warning("No product container found with any selector, continuing anyway...")
        return None

    async def content(self) -> str:
        return await self._require_page().content()

    async def fetch_fragment(self, url: str) -> str:
        """GET an HTML fragment with the active context's cookies.

        Returns an empty string on a non-200 answer or a request failure.
        """
        page = self._require_page()
        try:
            response = await self.context.request.get(url, headers={
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "X-Requested-With": "XMLHttpRequest",
                "Referer": page.url,
                "User-Agent": self.behavior.user_agent,
            })
            if response.status != 200:
                self.logger.error("Failed to fetch fragment %s: HTTP %d", url, response.status)
                return ""
            return await response.text()
        except PlaywrightError as e:
            self.logger.error("Error fetching fragment %s: %s", url, e)
            return ""

    async def capture_debug(self, label: str) -> None:
        """Save a screenshot and HTML dump when debug output is enabled."""
        if not self.debug_dir or self.page is None:
            return
        try:
            await save_page_artifacts(self.page, f"{self.store.name} {label}", self.debug_dir)
        except (PlaywrightError, OSError) as e:
            self.logger.warning("Failed to save debug artifacts: %s", e)

    async def cleanup(self) -> None:
        """Close the browser. Safe to call more than once."""
        browser = self.browser
        self.browser = self.context = self.page = None
        self.state = SessionState.CLOSED
        if browser is None:
            return
        try:
            await browser.close()
            self.logger.info("Browser closed for %s", self.store.name)
        except PlaywrightError as e:
            self.logger.error("Error during cleanup for %s: %s", self.store.name, e)
