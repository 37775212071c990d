import logging
from typing import Callable, Iterable, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from core.aggregation.aggregator import ResultAggregator
from core.aggregation.events import CompleteEvent, FailedEvent, StatusEvent, StoreErrorEvent
from core.errors import (
    CatalogLoadError,
    ScraperError,
    SessionInitError,
    StorageError,
    UnsupportedStoreError,
)
from core.models import CatalogConfig, MatchedResult, Store
from core.scrapers.controller import SessionController
from core.scrapers.scraper_factory import ScraperFactory
from core.scrapers.session import BrowserSession
from core.storage.base import ResultStorage

logger = logging.getLogger(__name__)


def parse_store_list(values) -> List[str]:
    """Flatten store names given as lists and/or comma-separated strings."""
    if not values:
        return []
    if isinstance(values, str):
        return [name.strip() for name in values.split(",") if name.strip()]
    names: List[str] = []
    for value in values:
        names.extend(parse_store_list(value))
    return names


def select_stores(config: CatalogConfig, requested: Optional[Iterable[str]] = None) -> List[Store]:
    """Pick the enabled stores to scrape, optionally narrowed by name.

    Raises:
        ValueError: If names were requested and none matches an enabled store
    """
    enabled = config.enabled_stores()
    names = parse_store_list(list(requested) if requested else [])
    if not names:
        return enabled

    wanted = {name.lower() for name in names}
    selected = [store for store in enabled if store.name.lower() in wanted]
    if not selected:
        raise ValueError(f"No enabled supermarkets matched the requested list: {', '.join(names)}")

    logger.info("Filtering supermarkets to: %s", ", ".join(store.name for store in selected))
    return selected


class ScrapeRunner:
    """Runs the selected stores one after another and saves the outcome.

    Progress is published on the aggregator's queue; the queue is closed when
    the run ends, whether it succeeded or not.
    """

    def __init__(self, config: CatalogConfig,
                 storage: Optional[ResultStorage] = None,
                 aggregator: Optional[ResultAggregator] = None,
                 debug_dir: Optional[str] = None,
                 playwright_factory: Callable = async_playwright):
        self.config = config
        self.storage = storage
        self.aggregator = aggregator or ResultAggregator()
        self.debug_dir = debug_dir
        self.playwright_factory = playwright_factory

    def save(self, results: List[MatchedResult]) -> Optional[str]:
        """Persist results; failures are logged and the run still completes."""
        if self.storage is None:
            logger.warning("No storage configured. Results will only be kept in memory.")
            return None
        try:
            return self.storage.save_results(results)
        except StorageError as e:
            logger.error("Failed to save results: %s", e)
            return None

    async def scrape_store(self, playwright, store: Store) -> List[MatchedResult]:
        logger.info("=== Processing %s ===", store.name)
        self.aggregator.publish(StatusEvent("processing", f"Processing {store.name}...", store.name))

        adapter = ScraperFactory.create_scraper(store)
        session = BrowserSession(
            playwright,
            store,
            self.config.scraping,
            aggressive=adapter.aggressive_bot_defense,
            debug_dir=self.debug_dir,
        )
        controller = SessionController(adapter, session)
        results = await controller.run(self.config.products, self.aggregator.callback_for(store.name))
        logger.info("Completed %s: %d products found", store.name, len(results))
        return results

    async def run(self, stores: Optional[List[Store]] = None) -> Tuple[List[MatchedResult], Optional[str]]:
        """Scrape every store and save the combined results.

        Returns:
            The de-duplicated results and the storage session id (None when
            nothing was persisted)
        """
        stores = self.config.enabled_stores() if stores is None else stores
        logger.info("Starting price comparison scraper: %d supermarket(s), %d product(s)",
                    len(stores), len(self.config.products))
        self.aggregator.publish(StatusEvent("started", "Scraping started..."))

        try:
            async with self.playwright_factory() as playwright:
                for store in stores:
                    try:
                        await self.scrape_store(playwright, store)
                    except (UnsupportedStoreError, SessionInitError, CatalogLoadError) as e:
                        logger.error("Failed to scrape %s: %s", store.name, e)
                        self.aggregator.publish(StoreErrorEvent(store.name, str(e)))
                    except Exception as e:
                        # one store's failure never ends the run
                        logger.exception("Unexpected error while scraping %s", store.name)
                        self.aggregator.publish(StoreErrorEvent(store.name, f"{type(e).__name__}: {e}"))

            results = list(self.aggregator.results)
            session_id = self.save(results)
            self.aggregator.publish(CompleteEvent(
                total_count=len(results),
                grouped=self.aggregator.grouped(),
                session_id=session_id,
            ))
            logger.info("Scraping completed: %d results", len(results))
            return results, session_id
        except (ScraperError, PlaywrightError) as e:
            logger.error("Fatal error: %s", e)
            self.aggregator.publish(FailedEvent(str(e)))
            raise
        finally:
            self.aggregator.close()
