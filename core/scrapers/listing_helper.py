import json
import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from core.models import CatalogRecord, Store

# Currency symbols stripped before parsing a price
_CURRENCY = re.compile(r"[€$£]")
_WHITESPACE = re.compile(r"\s+")
_NUMBER = re.compile(r"(\d+\.?\d*)")

# Text fragments that show up on challenge or block pages instead of listings
BLOCK_SIGNALS = [
    "sorry, you have been blocked",
    "attention required",
    "just a moment",
    "access denied",
    "verify you are human",
    "you are being rate limited",
]


def parse_price(price_text: Optional[str]) -> Optional[float]:
    """Extract a numerical price from listing text.

    Args:
        price_text: Text containing a price (e.g., "€2,49" or "16,79 €")

    Returns:
        The first numeric token as a float, or None when there is none
    """
    if not price_text:
        return None

    cleaned = _WHITESPACE.sub("", _CURRENCY.sub("", price_text)).replace(",", ".", 1)
    match = _NUMBER.search(cleaned)
    if match:
        return float(match.group(1))
    return None


def format_price(value: float) -> str:
    """Render a numeric price the way Belgian stores print it ("€2,49")."""
    return "€" + f"{value:.2f}".replace(".", ",")


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


class ListingHelper:
    """Default extraction behaviour shared by every site adapter.

    Adapters own one helper each and delegate to it for selector fallback
    chains, URL resolution, promotion detection and block detection. All
    selectors are evaluated against rendered HTML parsed with BeautifulSoup,
    so the helper never touches the browser.
    """

    def __init__(self, store: Store, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger(f"scraper.{store.name.lower()}")

    def soup(self, html: str) -> BeautifulSoup:
        """Parse a page or an HTML fragment."""
        return BeautifulSoup(html or "", "lxml")

    def first_text(self, element: Tag, selectors: Sequence[str], min_length: int = 1) -> str:
        """Walk an ordered selector chain and return the first usable text.

        A selector only wins when its text is at least min_length characters
        after whitespace collapsing; otherwise the next candidate is tried.
        """
        for selector in selectors:
            node = element.select_one(selector)
            if node is None:
                continue
            text = clean_text(node.get_text(" "))
            if len(text) >= min_length:
                return text
        return ""

    def first_attr(self, element: Tag, selectors: Sequence[str], attribute: str,
                   accept: Optional[Callable[[str], bool]] = None) -> Optional[str]:
        """Return the first non-empty attribute value along a selector chain."""
        for selector in selectors:
            node = element.select_one(selector)
            if node is None:
                continue
            value = node.get(attribute)
            if isinstance(value, list):
                value = " ".join(value)
            if not value or not value.strip():
                continue
            value = value.strip()
            if accept is None or accept(value):
                return value
        return None

    def absolute_url(self, href: Optional[str]) -> str:
        """Resolve a listing href against the store's base URL."""
        if not href or href == "#":
            return ""
        if href.startswith("http"):
            return href
        if href.startswith("//"):
            return f"https:{href}"
        return f"{self.store.base_url.rstrip('/')}/{href.lstrip('/')}"

    def select_containers(self, soup: Tag, selectors: Sequence[str]) -> List[Tag]:
        """Return the product tiles matched by the first productive selector."""
        for selector in selectors:
            found = soup.select(selector)
            if found:
                self.logger.info("Found %d products using selector %s", len(found), selector)
                return found
        return []

    def is_blocked(self, soup: BeautifulSoup) -> bool:
        """Detect a bot-block or challenge page from the rendered content."""
        title = clean_text(soup.title.get_text()).lower() if soup.title else ""
        if "cloudflare" in title or "access denied" in title or "just a moment" in title:
            return True
        body = soup.body or soup
        preview = clean_text(body.get_text(" "))[:400].lower()
        return any(signal in preview for signal in BLOCK_SIGNALS)

    # -- promotions -------------------------------------------------------

    def promo_from_badges(self, element: Tag, selectors: Sequence[str]) -> Optional[str]:
        text = self.first_text(element, selectors)
        return text or None

    def promo_from_data_attribute(self, element: Tag, attribute: str,
                                  nested_selectors: Sequence[str] = ()) -> Optional[str]:
        """Decode a JSON analytics attribute and pull out its promotion name."""
        candidates = [element] + [node for sel in nested_selectors for node in element.select(sel)]
        for node in candidates:
            promo = decode_promotion_attr(node.get(attribute))
            if promo:
                return promo
        return None

    def promo_from_price_comparison(self, element: Tag, old_selectors: Sequence[str],
                                    new_selectors: Sequence[str]) -> Optional[str]:
        old_price = self.first_text(element, old_selectors)
        new_price = self.first_text(element, new_selectors)
        if old_price and new_price and old_price != new_price:
            return f"Promo: {old_price} → {new_price}"
        return None

    def extract_promo(self, element: Tag, badge_selectors: Sequence[str] = (),
                      data_attribute: Optional[str] = None,
                      old_price_selectors: Sequence[str] = (),
                      new_price_selectors: Sequence[str] = ()) -> Optional[str]:
        """Badge text, then a decoded data attribute, then an old/new price pair."""
        promo = self.promo_from_badges(element, badge_selectors) if badge_selectors else None
        if not promo and data_attribute:
            promo = self.promo_from_data_attribute(element, data_attribute)
        if not promo and old_price_selectors and new_price_selectors:
            promo = self.promo_from_price_comparison(element, old_price_selectors, new_price_selectors)
        return promo

    # -- records ----------------------------------------------------------

    def extract_all(self, containers: Iterable[Tag],
                    extract: Callable[[Tag], Optional[CatalogRecord]]) -> List[CatalogRecord]:
        """Run a per-tile extractor; one broken tile never costs its siblings."""
        records = []
        for index, element in enumerate(containers, 1):
            try:
                record = extract(element)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                self.logger.warning("Error extracting product %d: %s", index, e)
                continue
            if record is not None:
                records.append(record)
        return records

    @staticmethod
    def merge_new(existing: List[CatalogRecord], page_records: Iterable[CatalogRecord]) -> int:
        """Append records not seen before; return how many were new."""
        seen = {record.identity() for record in existing}
        added = 0
        for record in page_records:
            key = record.identity()
            if key in seen:
                continue
            seen.add(key)
            existing.append(record)
            added += 1
        return added


def decode_promotion_attr(raw: Optional[str]) -> Optional[str]:
    """Read promotion_name out of an analytics JSON attribute.

    Attributes sometimes arrive with HTML-escaped quotes; both forms decode.
    """
    if not raw:
        return None
    try:
        parsed: Dict = json.loads(raw.replace("&quot;", '"'))
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None

    if parsed.get("promotion_name"):
        return parsed["promotion_name"]

    ecommerce = parsed.get("ecommerce")
    if not isinstance(ecommerce, dict):
        return None
    if ecommerce.get("promotion_name"):
        return ecommerce["promotion_name"]

    items = ecommerce.get("items") or []
    if items and isinstance(items[0], dict):
        return items[0].get("promotion_name") or None
    return None
