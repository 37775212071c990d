from typing import Dict, List, Optional
from urllib.parse import urlencode

from bs4 import Tag

from core.errors import BotDetectedError
from core.models import CatalogRecord, TargetProduct
from core.scrapers.base import SiteAdapter
from core.scrapers.listing_helper import clean_text, format_price, parse_price
from core.scrapers.session import BrowserSession

# Carrefour's brandLocalized facet values
BRAND_NAMES: Dict[str, str] = {
    "stella": "Stella Artois",
    "stella artois": "Stella Artois",
    "jupiler": "Jupiler",
    "maes": "Maes",
    "cristal": "Cristal",
}

GRID_PATH = "/on/demandware.store/Sites-carrefour-be-Site/default/Search-UpdateGrid"
PAGE_SIZE = 36

NAME_SELECTORS = [
    ".name-wrapper .desktop-name",
    ".name-wrapper .mobile-name",
    ".name-wrapper .link span",
    ".name-wrapper .link",
]
PRICE_SELECTORS = [
    ".pricing-wrapper .price .sales .value span",
    ".pricing-wrapper .price .sales span",
    ".pricing-wrapper .price .value span",
    ".pricing-wrapper .price span",
    ".price .sales .value span",
    ".price .sales span",
]
LINK_SELECTORS = [
    ".name-wrapper .pdp-link .link",
    ".name-wrapper .link",
    ".image-wrapper a",
    ".pdp-link .link",
]
PROMO_SELECTORS = [
    ".promo-tag-text",
    ".promo-tag .promo-tag-text",
    ".promo-tag",
    ".promo-label",
    ".promo-validity-date",
    ".promo-cta-link",
    '.tags-wrapper [class*="promo"]',
]
PROMO_ATTRIBUTE = "data-select-promotion-event-object"


class CarrefourScraper(SiteAdapter):
    """Carrefour: brand-faceted search, one page per fresh browser context.

    Cloudflare flags a context that pages through results, so every page after
    the first is loaded in a new context. When a page renders without tiles
    the grid fragment is requested directly from the AJAX endpoint.
    """

    max_pages = 5
    container_selectors = [
        ".product.js-product[data-pid]",
        ".product.js-product",
        ".product[data-pid]",
        ".product-tile.js-product-tile",
        ".product-tile",
    ]

    def listing_brands(self, products: List[TargetProduct]) -> List[str]:
        brands: List[str] = []
        for term in self.brand_terms(products):
            brand = BRAND_NAMES.get(term.lower(), term.title())
            if brand not in brands:
                brands.append(brand)
        return brands

    def _query(self, brands: List[str]) -> List[tuple]:
        return [
            ("cgid", "products"),
            ("q", "pils"),
            ("pmin", "0,01"),
            ("prefn1", "brandLocalized"),
            ("prefv1", "|".join(brands)),
        ]

    def search_url(self, brands: List[str], page: int = 1) -> str:
        params = self._query(brands)
        if page > 1:
            params.append(("p", str(page)))
        return f"{self.store.base_url.rstrip('/')}/nl/search?{urlencode(params)}"

    def grid_url(self, brands: List[str], start: int = 0, size: int = PAGE_SIZE) -> str:
        params = self._query(brands) + [("srule", "Relevantie"), ("start", str(start)), ("sz", str(size))]
        return f"{self.store.base_url.rstrip('/')}{GRID_PATH}?{urlencode(params)}"

    async def load_catalog(self, session: BrowserSession,
                           products: List[TargetProduct]) -> List[CatalogRecord]:
        brands = self.listing_brands(products)
        self.logger.info("Loading Carrefour search for brands: %s", ", ".join(brands))

        await session.navigate(self.search_url(brands), wait_for_network_idle=True)
        records = await self.read_current_page(session, "page 1")
        self.logger.info("Extracted %d products from page 1", len(records))

        for page in range(2, self.max_pages + 1):
            self.logger.info("Resetting context before navigating to page %d...", page)
            await session.reset_context()
            await session.anti_bot.pause(3000)

            url = self.search_url(brands, page)
            if await session.navigate_expecting_response(url, "Search-UpdateGrid"):
                self.logger.info("Received grid response on page %d", page)
                await session.anti_bot.pause(1500)

            try:
                page_records = await self.read_current_page(session, f"page {page}")
                if not page_records:
                    page_records = await self._fetch_grid(session, brands, page)
            except BotDetectedError:
                self.logger.error("Cloudflare blocking detected on page %d. Stopping pagination.", page)
                break

            added = self.helper.merge_new(records, page_records)
            self.logger.info("Extracted %d new products from page %d (total: %d)", added, page, len(records))
            if added == 0:
                self.logger.info("No new products on page %d, stopping pagination", page)
                break

        self.logger.info("Cached %d Carrefour products", len(records))
        return records

    async def _fetch_grid(self, session: BrowserSession, brands: List[str],
                          page: int) -> List[CatalogRecord]:
        start = (page - 1) * PAGE_SIZE
        self.logger.info("Fetching products from grid endpoint: start=%d, size=%d", start, PAGE_SIZE)
        html = await session.fetch_fragment(self.grid_url(brands, start))
        if not html:
            return []
        return self.parse_listing(html, f"grid fragment {page}")

    def extract_record(self, element: Tag) -> Optional[CatalogRecord]:
        name = self._name(element)
        if len(name) < 3:
            return None

        price_text = self._price_text(element)
        if not price_text:
            return None

        href = self.helper.first_attr(element, LINK_SELECTORS, "href",
                                      accept=lambda value: value != "#" and ".html" in value)
        image_url = (self.helper.first_attr(element, [".tile-image"], "src")
                     or self.helper.first_attr(element, [".tile-image"], "data-src"))

        return CatalogRecord(
            name=name,
            price_text=price_text,
            price_value=parse_price(price_text),
            link=self.helper.absolute_url(href),
            image_url=image_url,
            metadata=self._metadata(element),
            promo_tag=self._promo(element),
        )

    def _name(self, element: Tag) -> str:
        name = self.helper.first_text(element, NAME_SELECTORS, min_length=4)
        if not name:
            image = element.select_one(".tile-image")
            if image is not None:
                alt = clean_text(image.get("alt"))
                title = clean_text((image.get("title") or "").split("|")[0])
                name = alt if len(alt) > 3 else title if len(title) > 3 else ""
        if len(name) < 3:
            return ""

        brand = self.helper.first_text(element, [".brand-wrapper a"])
        if brand and brand.lower() not in name.lower():
            name = f"{brand} {name}"
        return name

    def _price_text(self, element: Tag) -> str:
        for selector in PRICE_SELECTORS:
            node = element.select_one(selector)
            text = clean_text(node.get_text(" ")) if node else ""
            if "€" in text:
                return text

        value_node = element.select_one(".price .sales .value")
        if value_node is not None and value_node.get("content"):
            try:
                value = float(value_node["content"])
            except ValueError:
                return ""
            if value > 0:
                return format_price(value)
        return ""

    def _metadata(self, element: Tag) -> str:
        package_info = self.helper.first_text(element, [".package-info-wrapper .package-info"])
        unit_price = self.helper.first_text(element, [".price-per-unit-wrapper"])
        if package_info and unit_price:
            return f"{package_info} ({unit_price})"
        return package_info or unit_price

    def _promo(self, element: Tag) -> Optional[str]:
        return (
            self.helper.promo_from_badges(element, PROMO_SELECTORS)
            or self.helper.promo_from_data_attribute(element, PROMO_ATTRIBUTE,
                                                     nested_selectors=[".product-tile"])
        )
