from typing import Callable, List, Optional

from playwright.async_api import Error as PlaywrightError

from core.errors import BotDetectedError, CatalogLoadError, ScraperError
from core.matching.rules import ProductMatcher, apply_store_overrides
from core.models import CatalogRecord, MatchedResult, TargetProduct
from core.scrapers.base import SiteAdapter
from core.scrapers.session import BrowserSession

# Called with (new matches for one product, every match so far for the store)
BatchCallback = Callable[[List[MatchedResult], List[MatchedResult]], None]


class SessionController:
    """Runs every target product against one store's cached catalog.

    The catalog is loaded once through the adapter, then filtered per product.
    A failure on one product is logged and the loop moves on; a block page
    also costs a fresh context and a long backoff. Session initialization and
    catalog load failures escape run().
    """

    def __init__(self, adapter: SiteAdapter, session: BrowserSession,
                 matcher: Optional[ProductMatcher] = None):
        self.adapter = adapter
        self.session = session
        self.matcher = matcher or ProductMatcher(session.behavior)
        self.logger = adapter.logger

    @property
    def store_name(self) -> str:
        return self.adapter.store.name

    async def ensure_catalog(self, products: List[TargetProduct]) -> List[CatalogRecord]:
        """Return the session's catalog, loading it on first use.

        Raises:
            BotDetectedError: The listing was a block page; the cache stays
                unset so a later call retries the load
            CatalogLoadError: Any other load failure; the cache is set empty
        """
        if self.session.catalog is not None:
            self.logger.debug("Using cached %s products (%d items)",
                              self.store_name, len(self.session.catalog))
            return self.session.catalog

        try:
            self.session.catalog = await self.adapter.load_catalog(self.session, products)
        except BotDetectedError:
            self.session.catalog = None
            raise
        except (ScraperError, PlaywrightError, ValueError) as e:
            self.session.catalog = []
            raise CatalogLoadError(f"Failed to load {self.store_name} catalog: {e}") from e
        return self.session.catalog

    async def run_catalog(self, products: List[TargetProduct],
                          on_batch: Optional[BatchCallback] = None) -> List[MatchedResult]:
        """Match every product against the store's catalog.

        Args:
            products: Target products, searched in order
            on_batch: Invoked right after each product with a non-empty match set

        Returns:
            Every match found for this store, in product order

        Raises:
            CatalogLoadError: If the store's listing could not be loaded
        """
        results: List[MatchedResult] = []
        aggressive = self.adapter.aggressive_bot_defense
        anti_bot = self.session.anti_bot

        for index, original in enumerate(products):
            product = apply_store_overrides(original, self.store_name)
            try:
                if aggressive and index > 0:
                    await self.session.reset_context()
                    await anti_bot.long_delay(5000, 10000)

                catalog = await self.ensure_catalog(products)
                if not catalog:
                    self.logger.warning("No cached %s products available", self.store_name)
                    break

                matches = [
                    MatchedResult.from_record(record, self.store_name, product.name)
                    for record in self.matcher.filter_catalog(catalog, product)
                ]
                if matches:
                    results.extend(matches)
                    if on_batch is not None:
                        on_batch(matches, list(results))
                    self.logger.info('Found %d %s matches for "%s"',
                                     len(matches), self.store_name, product.name)
                else:
                    self.logger.warning('No matching %s products found for "%s" (%d products scanned)',
                                        self.store_name, product.name, len(catalog))
            except CatalogLoadError:
                raise
            except BotDetectedError as e:
                self.logger.warning('Blocked while searching for "%s" at %s: %s',
                                    product.name, self.store_name, e)
                await self.session.reset_context()
                await anti_bot.long_delay(10000, 20000)
                continue
            except (ScraperError, PlaywrightError) as e:
                self.logger.error('Error searching for "%s" at %s: %s', product.name, self.store_name, e)
                if aggressive:
                    await self.session.reset_context()
                    await anti_bot.long_delay(10000, 20000)
                continue

            if index < len(products) - 1:
                if aggressive:
                    await anti_bot.long_delay(8000, 15000)
                else:
                    await anti_bot.random_delay()

        return results

    async def run(self, products: List[TargetProduct],
                  on_batch: Optional[BatchCallback] = None) -> List[MatchedResult]:
        """Initialize the session, run the catalog and always close the browser.

        Raises:
            SessionInitError: If the browser cannot be started
            CatalogLoadError: If the listing could not be loaded; the browser is
                still closed
        """
        try:
            await self.session.initialize()
            return await self.run_catalog(products, on_batch)
        finally:
            await self.session.cleanup()
