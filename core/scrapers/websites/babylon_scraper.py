from typing import List, Optional

from bs4 import Tag

from core.models import CatalogRecord, TargetProduct
from core.scrapers.base import SiteAdapter
from core.scrapers.listing_helper import clean_text, parse_price
from core.scrapers.session import BrowserSession

NAME_SELECTORS = [
    ".woocommerce-loop-product__title",
    ".product-title",
    ".title",
    "h2",
    "h3",
]
PRICE_SELECTORS = [
    ".price ins .woocommerce-Price-amount",
    ".price ins",
    ".price bdi",
    ".price",
    ".product-price",
    ".woocommerce-Price-amount",
]
META_SELECTORS = [
    ".product-loop-meta",
    ".product-loop-content",
    ".woocommerce-product-details__short-description",
]
BADGE_SELECTORS = [
    ".woostify-tag-on-sale",
    ".onsale",
    ".sale-badge",
    ".sale-left",
    ".sale-right",
]


class BabylonScraper(SiteAdapter):
    """Babylon Drinks: the WooCommerce beer category, single page."""

    container_selectors = [
        ".product-loop-wrapper",
        "ul.products li.product",
        "li.product",
        "article.product",
    ]

    def category_url(self) -> str:
        return f"{self.store.base_url.rstrip('/')}/product-category/bieren/"

    async def load_catalog(self, session: BrowserSession,
                           products: List[TargetProduct]) -> List[CatalogRecord]:
        url = self.category_url()
        self.logger.info("Navigating to Babylon Drinks category: %s", url)
        await session.navigate(url)
        records = await self.read_current_page(session, "category")
        self.logger.info("Cached %d Babylon Drinks products", len(records))
        return records

    def extract_record(self, element: Tag) -> Optional[CatalogRecord]:
        name = self.helper.first_text(element, NAME_SELECTORS, min_length=3)
        if not name:
            name = self.helper.first_attr(element, ["a"], "title") or ""
        if not name:
            self.logger.warning("Skipping Babylon product without a name")
            return None

        price_text, price_value = self._price(element)
        if not price_text:
            self.logger.warning("Could not determine price for Babylon product %s", name)
            return None

        href = self.helper.first_attr(element, ["a.woocommerce-LoopProduct-link", "a"], "href")
        return CatalogRecord(
            name=name,
            price_text=price_text,
            price_value=price_value,
            link=self.helper.absolute_url(href),
            image_url=self.helper.first_attr(element, ["img.product-loop-image", "img"], "src"),
            metadata=self.helper.first_text(element, META_SELECTORS),
            promo_tag=self.helper.extract_promo(
                element,
                badge_selectors=BADGE_SELECTORS,
                old_price_selectors=["del .woocommerce-Price-amount", "del bdi"],
                new_price_selectors=["ins .woocommerce-Price-amount", "ins bdi"],
            ),
        )

    def _price(self, element: Tag):
        """First price candidate that parses; otherwise the last text seen."""
        price_text = ""
        for selector in PRICE_SELECTORS:
            node = element.select_one(selector)
            text = clean_text(node.get_text(" ")) if node else ""
            if not text:
                continue
            price_text = text
            value = parse_price(text)
            if value is not None:
                return text, value
        return price_text, None
