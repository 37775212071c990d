from typing import Dict, List, Type

from core.errors import UnsupportedStoreError
from core.models import Store
from core.scrapers.base import SiteAdapter
from core.scrapers.websites.babylon_scraper import BabylonScraper
from core.scrapers.websites.carrefour_scraper import CarrefourScraper
from core.scrapers.websites.colruyt_scraper import ColruytScraper
from core.scrapers.websites.delhaize_scraper import DelhaizeScraper
from core.scrapers.websites.prikentik_scraper import PrikentikScraper


class ScraperFactory:
    """Factory for creating the site adapter that matches a configured store.

    Lookups are case-insensitive and accept the alternative spellings stores
    are commonly configured under.
    """

    # Map of lowercase store names and aliases to adapter classes
    SCRAPERS: Dict[str, Type[SiteAdapter]] = {
        "delhaize": DelhaizeScraper,
        "colruyt": ColruytScraper,
        "carrefour": CarrefourScraper,
        "babylon": BabylonScraper,
        "babylon drinks": BabylonScraper,
        "prik&tik": PrikentikScraper,
        "prik en tik": PrikentikScraper,
        "prikentik": PrikentikScraper,
    }

    @classmethod
    def supports(cls, store_name: str) -> bool:
        return store_name.strip().lower() in cls.SCRAPERS

    @classmethod
    def create_scraper(cls, store: Store) -> SiteAdapter:
        """Create and return the adapter for a store.

        Args:
            store: Configured store; its name selects the adapter

        Raises:
            UnsupportedStoreError: If no adapter is registered under that name
        """
        adapter_class = cls.SCRAPERS.get(store.name.strip().lower())
        if adapter_class is None:
            raise UnsupportedStoreError(store.name)
        return adapter_class(store)

    @classmethod
    def supported_names(cls) -> List[str]:
        return sorted(cls.SCRAPERS)
