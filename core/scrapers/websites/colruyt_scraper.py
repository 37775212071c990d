from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

from bs4 import Tag

from core.errors import BotDetectedError
from core.models import CatalogRecord, TargetProduct
from core.scrapers.base import SiteAdapter
from core.scrapers.listing_helper import clean_text, format_price, parse_price
from core.scrapers.session import BrowserSession

# Colruyt's brand facet uses full brand names, sometimes split over several labels
BRAND_ALIASES: Dict[str, List[str]] = {
    "stella": ["Stella Artois"],
    "jupiler": ["Jupiler"],
    "maes": ["Maes"],
    "cristal": ["Cristal", "Cristal Alken"],
}

PROMO_SELECTORS = [
    ".card__label--promo",
    ".promo-counter-label",
    ".promos__description",
    ".promos__link",
]

NEXT_PAGE_SELECTOR = 'a[aria-label*="volgende"], a[aria-label*="next"], button[aria-label*="volgende"]'


class ColruytScraper(SiteAdapter):
    """Colruyt: brand-faceted product overview, paginated.

    Colruyt blocks fast or repetitive browsing, so the controller treats it
    with the long delays and proactive context resets.
    """

    aggressive_bot_defense = True
    max_pages = 3
    container_selectors = [
        'a.card.card--article[data-tms-product-type="real"]',
        "a.card.card--article",
        "a[data-tms-product-id]",
    ]

    def listing_brands(self, products: List[TargetProduct]) -> List[str]:
        brands: List[str] = []
        for term in self.brand_terms(products):
            for brand in BRAND_ALIASES.get(term.lower(), [term]):
                if brand not in brands:
                    brands.append(brand)
        return brands

    def listing_url(self, brands: List[str], page: int = 1) -> str:
        params: List[Tuple[str, str]] = [("brand", brand) for brand in brands]
        params += [
            ("method", "user typed"),
            ("o", "product overview"),
            ("page", str(page)),
            ("searchTerm", "pils"),
            ("suggestion", "none"),
            ("type", "product"),
        ]
        return f"{self.store.base_url.rstrip('/')}/nl/producten?{urlencode(params)}"

    def has_next_page(self, html: str) -> bool:
        button = self.helper.soup(html).select_one(NEXT_PAGE_SELECTOR)
        return button is not None and not button.has_attr("disabled")

    async def load_catalog(self, session: BrowserSession,
                           products: List[TargetProduct]) -> List[CatalogRecord]:
        brands = self.listing_brands(products)
        self.logger.info("Loading all Colruyt products with brands: %s", ", ".join(brands))

        records: List[CatalogRecord] = []
        for page in range(1, self.max_pages + 1):
            if page > 1:
                await session.anti_bot.long_delay(1000, 2000)

            await session.navigate(self.listing_url(brands, page))
            try:
                page_records = await self.read_current_page(session, f"page {page}", back_to_top=True)
            except BotDetectedError:
                if page == 1:
                    raise
                self.logger.warning("Block page on Colruyt page %d, stopping pagination", page)
                break

            added = self.helper.merge_new(records, page_records)
            self.logger.info("Page %d added %d new products (total: %d)", page, added, len(records))
            if added == 0 or not self.has_next_page(await session.content()):
                break

        self.logger.info("Cached %d Colruyt products", len(records))
        return records

    def extract_record(self, element: Tag) -> Optional[CatalogRecord]:
        # Generic tiles are recipe or category teasers, not products
        if element.get("data-tms-product-type") == "generic":
            return None
        if element.get("data-tms-product-id") == "0":
            return None

        name = self._name(element)
        if len(name) < 3:
            return None

        price_text, price_value = self._price(element)
        if not price_text:
            return None

        return CatalogRecord(
            name=name,
            price_text=price_text,
            price_value=price_value if price_value is not None else parse_price(price_text),
            link=self.helper.absolute_url(element.get("href")),
            image_url=self.helper.first_attr(element, [".card__image img", "img"], "src"),
            metadata=self.helper.first_text(element, [".card__quantity"]),
            promo_tag=self._promo(element),
        )

    def _name(self, element: Tag) -> str:
        brand = (element.get("data-tms-product-brand") or "").strip()
        name = (element.get("data-tms-product-name") or "").strip()
        full_name = f"{brand} {name}".strip()
        if len(full_name) >= 3:
            return full_name

        longname = (element.get("longname") or "").strip()
        if len(longname) > 3:
            return longname

        return self.helper.first_text(element, ["p.card__text"], min_length=4)

    def _price(self, element: Tag):
        raw = element.get("data-tms-product-price")
        if raw:
            try:
                value = float(raw)
            except ValueError:
                value = 0.0
            if value > 0:
                return format_price(value), value

        label = element.select_one(".price-info__price-label")
        if label is None:
            return "", None

        whole = label.select_one(".rounded-number")
        decimal = label.select_one(".decimal")
        whole_text = clean_text(whole.get_text()) if whole else ""
        decimal_text = clean_text(decimal.get_text()) if decimal else ""
        if whole_text:
            text = f"€{whole_text},{decimal_text}" if decimal_text else f"€{whole_text}"
            return text, parse_price(text)

        text = clean_text(label.get_text()).replace(" ", "")
        return text, parse_price(text)

    def _promo(self, element: Tag) -> Optional[str]:
        raw = element.get("data-tms-product-promotion")
        if raw:
            parts = [part.strip() for part in raw.split("|") if part.strip()]
            if parts:
                return " • ".join(parts)

        labels = []
        for selector in PROMO_SELECTORS:
            node = element.select_one(selector)
            text = clean_text(node.get_text(" ")) if node else ""
            if text:
                labels.append(text)
        if labels:
            return " • ".join(labels)

        if element.get("data-has-promo") == "true":
            return "Promo"
        return None
