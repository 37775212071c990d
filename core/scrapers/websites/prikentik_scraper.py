from typing import List, Optional

from bs4 import Tag

from core.models import CatalogRecord, TargetProduct
from core.scrapers.base import SiteAdapter
from core.scrapers.listing_helper import parse_price
from core.scrapers.session import BrowserSession

# Magento brand filter ids for Stella Artois, Jupiler, Cristal and Maes
CATEGORY_QUERY = "/bier?brand=316%2C317%2C584%2C574&product_list_limit=36"

PRICE_SELECTORS = [
    ".price-box .special-price .price",
    ".price-box .price-wrapper .price",
    ".price-box .price",
    ".price-container .price",
]


class PrikentikScraper(SiteAdapter):
    """Prik&Tik: the Magento beer category filtered on the tracked brands."""

    container_selectors = ["form.product-item"]

    def category_url(self) -> str:
        return f"{self.store.base_url.rstrip('/')}{CATEGORY_QUERY}"

    async def load_catalog(self, session: BrowserSession,
                           products: List[TargetProduct]) -> List[CatalogRecord]:
        url = self.category_url()
        self.logger.info("Navigating to Prik&Tik category: %s", url)
        await session.navigate(url)
        records = await self.read_current_page(session, "category")
        self.logger.info("Cached %d Prik&Tik products", len(records))
        return records

    def extract_record(self, element: Tag) -> Optional[CatalogRecord]:
        name = self.helper.first_text(element, ["a.product-item-link"])
        if not name:
            return None

        price_text = self.helper.first_text(element, PRICE_SELECTORS)
        if not price_text:
            return None

        brand = self.helper.first_text(element, [".text-forrest-800"])
        availability = self.helper.first_text(element, [".stock span:last-child"])

        return CatalogRecord(
            name=name,
            price_text=price_text,
            price_value=parse_price(price_text),
            link=self.helper.absolute_url(self.helper.first_attr(element, ["a.product-item-link"], "href")),
            image_url=self.helper.first_attr(element, ["picture img", "img"], "src"),
            metadata=" ".join(part for part in (brand, availability) if part),
            promo_tag=self.helper.extract_promo(
                element,
                badge_selectors=[".product-label-promo span", ".product-label-promo"],
                old_price_selectors=[".old-price .price"],
                new_price_selectors=[".special-price .price"],
            ),
        )
