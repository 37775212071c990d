import re
from typing import List, Optional
from urllib.parse import quote

from bs4 import Tag

from core.models import CatalogRecord, TargetProduct
from core.scrapers.base import SiteAdapter
from core.scrapers.listing_helper import clean_text, parse_price
from core.scrapers.session import BrowserSession

# Prices are announced to screen readers as "2 euro 49 cent"
ARIA_PRICE = re.compile(r"(\d+)\s*euro\s*(\d+)?\s*cent")

NAME_SELECTORS = [
    'a[data-testid="product-block-name-link"]',
    'h3[data-testid="styled-title"]',
    '[data-testid="product-block-product-name"]',
]
LINK_SELECTORS = [
    'a[data-testid="product-block-name-link"]',
    'a[data-testid="product-block-image-link"]',
]
PROMO_SELECTORS = [
    '[data-testid="tag-label"]',
    '[data-testid="tag"] [data-testid="tag-label"]',
    '[data-testid="badge"]',
]

# Longer OR-queries make the search URL fail
MAX_SEARCH_BRANDS = 5


class DelhaizeScraper(SiteAdapter):
    """Delhaize: one combined "brand OR brand" search, single page."""

    container_selectors = ['[data-testid="product-block"]']

    def search_url(self, products: List[TargetProduct]) -> str:
        terms = [term.lower() for term in self.brand_terms(products)][:MAX_SEARCH_BRANDS]
        query = quote(" OR ".join(terms))
        return f"{self.store.base_url.rstrip('/')}/shop/search?q={query}:relevance&text={query}&sort=relevance"

    async def load_catalog(self, session: BrowserSession,
                           products: List[TargetProduct]) -> List[CatalogRecord]:
        url = self.search_url(products)
        self.logger.info("Loading all Delhaize products with search: %s", url)
        await session.navigate(url)
        records = await self.read_current_page(session, "search results")
        self.logger.info("Cached %d Delhaize products", len(records))
        return records

    def extract_record(self, element: Tag) -> Optional[CatalogRecord]:
        name = self.helper.first_text(element, NAME_SELECTORS)
        if len(name) < 3:
            brand = self.helper.first_text(element, ['span[data-testid="product-brand"]'])
            short_name = self.helper.first_text(element, ['span[data-testid="product-name"]'])
            name = f"{brand} {short_name}".strip()
        if len(name) < 3:
            return None

        price_text = self._price_text(element)
        if not price_text:
            return None

        href = self.helper.first_attr(element, LINK_SELECTORS, "href")
        return CatalogRecord(
            name=name,
            price_text=price_text,
            price_value=parse_price(price_text),
            link=self.helper.absolute_url(href),
            image_url=self.helper.first_attr(element, ['img[data-testid="product-block-image"]'], "src"),
            metadata=self.helper.first_text(element, ['[data-testid="product-block-attributes"]']),
            promo_tag=self.helper.extract_promo(element, badge_selectors=PROMO_SELECTORS),
        )

    def _price_text(self, element: Tag) -> str:
        container = element.select_one('[data-testid="product-block-price"]')
        if container is None:
            return ""

        match = ARIA_PRICE.search(container.get("aria-label") or "")
        if match:
            euros, cents = match.groups()
            return f"€{euros},{cents}" if cents else f"€{euros}"

        return clean_text(container.get_text(" ")).replace(" ", "")
