# This file defines the capability interface every store adapter implements.
# An adapter knows how to list one store's beer catalog and how to read a single
# product tile; everything else (browser lifecycle, matching, delays) lives elsewhere.

import abc
import logging
from typing import Dict, List, Optional, Sequence

from bs4 import Tag

from core.errors import BotDetectedError
from core.matching.rules import apply_store_overrides
from core.models import CatalogRecord, Store, TargetProduct
from core.scrapers.listing_helper import ListingHelper
from core.scrapers.session import BrowserSession


class SiteAdapter(abc.ABC):
    """Base class for store adapters.

    Adapters own a ListingHelper for the shared extraction behaviour and are
    driven by the session controller, which calls load_catalog() at most once
    per successful run.

    Class attributes:
        aggressive_bot_defense: The store blocks fast or repetitive browsing;
            the controller resets contexts and waits longer between products.
        max_pages: Upper bound on listing pages visited per catalog load.
    """

    aggressive_bot_defense = False
    max_pages = 1

    # Ordered candidates for the product tiles on a listing page
    container_selectors: Sequence[str] = ()

    def __init__(self, store: Store):
        self.store = store
        self.logger = logging.getLogger(f"scraper.{store.name.lower()}")
        self.helper = ListingHelper(store, self.logger)

    @property
    def name(self) -> str:
        return self.store.name

    @abc.abstractmethod
    async def load_catalog(self, session: BrowserSession,
                           products: List[TargetProduct]) -> List[CatalogRecord]:
        """Navigate the store's listing pages and extract every product tile.

        Args:
            session: Active browser session for this store
            products: Target products; their brands shape the listing query

        Returns:
            The catalog, possibly empty

        Raises:
            BotDetectedError: If the first listing page is a block page
        """
        raise NotImplementedError("Concrete adapters must implement load_catalog()")

    @abc.abstractmethod
    def extract_record(self, element: Tag) -> Optional[CatalogRecord]:
        """Read one product tile; None when it has no name or no price text."""
        raise NotImplementedError("Concrete adapters must implement extract_record()")

    def brand_terms(self, products: List[TargetProduct]) -> List[str]:
        """Union of the brands referenced by the products, in first-seen order.

        Brands are the products' required keywords (after this store's
        overrides), or the first word of the product name when none is set.
        """
        brands: Dict[str, str] = {}
        for product in products:
            effective = apply_store_overrides(product, self.store.name)
            terms = effective.required_keywords or [effective.name.split(" ")[0]]
            for term in terms:
                brands.setdefault(term.lower(), term)
        return list(brands.values())

    def parse_listing(self, html: str, page_label: str = "") -> List[CatalogRecord]:
        """Extract the records of one rendered listing page or fragment.

        Raises:
            BotDetectedError: If the page is a block or challenge page
        """
        soup = self.helper.soup(html)
        if self.helper.is_blocked(soup):
            raise BotDetectedError(self.store.name, page_label)

        containers = self.helper.select_containers(soup, self.container_selectors)
        if not containers:
            self.logger.warning("No products found on %s listing %s", self.store.name, page_label)
            return []
        return self.helper.extract_all(containers, self.extract_record)

    async def read_current_page(self, session: BrowserSession, label: str,
                                settle_ms: int = 800,
                                back_to_top: bool = False) -> List[CatalogRecord]:
        """Wait for tiles, scroll for lazy loading and parse the rendered page."""
        await session.wait_for_any_selector(self.container_selectors)
        await session.anti_bot.pause(1000)
        await session.anti_bot.lazy_load_scroll(session.page, settle_ms=settle_ms,
                                                back_to_top=back_to_top)
        await session.capture_debug(label)
        return self.parse_listing(await session.content(), label)
