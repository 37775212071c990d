import asyncio
import logging
import random
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from core.models import ScrapingBehaviorConfig

logger = logging.getLogger(__name__)

# Cookie consent buttons seen on Belgian retail sites, most specific first
COOKIE_SELECTORS = [
    "#onetrust-accept-btn-handler",
    'button[id*="accept"]',
    'button[class*="accept"]',
    'button[id*="cookie"]',
    'button[class*="cookie"]',
    'button:has-text("Alles accepteren")',
    'button:has-text("Accepteren")',
    'button:has-text("Accept")',
    'button:has-text("Akkoord")',
    'button:has-text("OK")',
    '[data-testid*="cookie"]',
    '[data-testid*="accept"]',
]


class AntiBot:
    """Delay policies and simulated human interaction.

    The delays are what keep a run under the radar of the stores' bot
    protection, so every wait in the scraping core goes through this class.
    Interaction helpers never raise: a failed mouse move or scroll is logged
    and the run goes on.
    """

    def __init__(self, behavior: Optional[ScrapingBehaviorConfig] = None):
        self.behavior = behavior or ScrapingBehaviorConfig()

    async def pause(self, milliseconds: float) -> None:
        """Sleep for a fixed number of milliseconds."""
        await asyncio.sleep(max(0.0, milliseconds) / 1000)

    async def random_delay(self) -> None:
        """Short bounded-random delay from the behaviour config."""
        low = self.behavior.random_delay_min
        high = max(low, self.behavior.random_delay_max)
        await self.pause(random.uniform(low, high))

    async def long_delay(self, base_delay: int = 5000, max_delay: int = 15000) -> float:
        """Jittered backoff used against stores with aggressive bot defenses.

        Returns the delay actually waited, in milliseconds.
        """
        jitter = random.random() * 2000
        delay = min(base_delay + jitter, max_delay)
        logger.info("Waiting %dms to avoid bot detection...", round(delay))
        await self.pause(delay)
        return delay

    async def simulate_mouse_movement(self, page: Page) -> None:
        try:
            viewport = page.viewport_size
            if not viewport:
                return

            for _ in range(random.randint(3, 5)):
                x = random.random() * viewport["width"]
                y = random.random() * viewport["height"]
                # more steps gives a smoother, more human trajectory
                await page.mouse.move(x, y, steps=random.randint(15, 24))
                await self.pause(150 + random.random() * 200)
        except PlaywrightError as e:
            logger.warning("Failed to simulate mouse movement: %s", e)

    async def simulate_reading(self, page: Page) -> None:
        """Pause as if reading, then nudge the page down a little."""
        try:
            await self.pause(2000 + random.random() * 3000)
            if page.viewport_size:
                await page.evaluate("(amount) => window.scrollBy(0, amount)", 50 + random.random() * 100)
                await self.pause(500 + random.random() * 1000)
        except PlaywrightError as e:
            logger.warning("Failed to simulate reading: %s", e)

    async def human_scroll(self, page: Page) -> None:
        """Scroll down one viewport in five steps, then back to the top."""
        try:
            viewport = page.viewport_size
            if not viewport:
                return

            scroll_steps = 5
            amount = viewport["height"] / scroll_steps
            for _ in range(scroll_steps):
                await page.evaluate("(amount) => window.scrollBy(0, amount)", amount)
                await self.pause(200)

            await page.evaluate("() => window.scrollTo(0, 0)")
        except PlaywrightError as e:
            logger.warning("Failed to perform human scroll: %s", e)

    async def lazy_load_scroll(self, page: Page, settle_ms: int = 800, back_to_top: bool = False) -> None:
        """Scroll to the middle and the bottom so lazily rendered tiles load."""
        try:
            await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight / 2)")
            await self.pause(settle_ms)
            await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
            await self.pause(settle_ms)
            if back_to_top:
                await page.evaluate("() => window.scrollTo(0, 0)")
                await self.pause(settle_ms / 2)
        except PlaywrightError as e:
            logger.warning("Failed to scroll for lazy loading: %s", e)

    async def wait_for_page_load(self, page: Page) -> None:
        """Wait for network idle plus the configured settle time.

        A timeout is not an error: whatever has loaded is good enough.
        """
        try:
            await page.wait_for_load_state("networkidle", timeout=self.behavior.timeout)
            await self.pause(self.behavior.wait_after_page_load)
        except PlaywrightError as e:
            logger.warning("Page load timeout, continuing anyway: %s", e)

    async def handle_cookie_banner(self, page: Page) -> bool:
        """Click the first visible cookie consent button, if any."""
        for selector in COOKIE_SELECTORS:
            try:
                button = await page.query_selector(selector)
                if button and await button.is_visible():
                    await button.click()
                    logger.info("Clicked cookie button: %s", selector)
                    await self.pause(1000)
                    return True
            except PlaywrightError:
                # detached or covered button, try the next candidate
                continue
        return False
