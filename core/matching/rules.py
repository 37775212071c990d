# Keyword matching and the accept/reject pipeline applied to every cached
# catalog record for every target product.

import logging
import re
import unicodedata
from typing import Dict, Iterable, List, Optional

from core.models import CatalogRecord, ScrapingBehaviorConfig, TargetProduct

logger = logging.getLogger(__name__)

# Each group is applied in both directions: a "bak" keyword matches "krat" text
# and a "krat" keyword matches "bak" text.
SYNONYM_GROUPS: List[List[str]] = [
    ["bak", "krat", "crate", "case"],
    ["fles", "flesje", "bottle"],
]

# Generic category vocabulary used when no required keyword vouches for the record
CATEGORY_TERMS = ["bier", "pils", "beer", "ale", "lager"]

ALCOHOL_FREE_MARKERS = [
    "0.0%",
    "0,0%",
    "0.0 %",
    "0,0 %",
    "alcoholvrij",
    "alcohol-free",
    "alcohol free",
    "alcohol vrij",
    "zonder alcohol",
    "non-alcoholic",
    "non alcoholic",
    "zero alcohol",
    "0% alcohol",
    "0 % alcohol",
]

# Merchandise sold next to the beer (glassware, apparel, accessories)
EXCLUDE_TERMS = [
    "glas",
    "beker",
    "koeler",
    "opener",
    "flesopener",
    "bierglas",
    "bierbeker",
    "bierkoeler",
    "bieropener",
    "t-shirt",
    "shirt",
    "pet",
    "muts",
    "sleutelhanger",
    "poster",
    "kalender",
]

_SEPARATORS = re.compile(r"[\s\-.]")

# Whole words only, so "pet" does not reject "Petrus"
_EXCLUDE_PATTERN = re.compile(r"\b(?:%s)\b" % "|".join(re.escape(term) for term in EXCLUDE_TERMS))


def _build_synonyms(groups: Iterable[List[str]]) -> Dict[str, List[str]]:
    table: Dict[str, List[str]] = {}
    for group in groups:
        for term in group:
            table[term] = [other for other in group if other != term]
    return table


KEYWORD_SYNONYMS = _build_synonyms(SYNONYM_GROUPS)


def fold(text: str) -> str:
    """Lowercase and strip diacritics, keeping separators."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(text: str) -> str:
    """Fold and drop whitespace, dashes and dots ("6 x 33 cl" -> "6x33cl")."""
    return _SEPARATORS.sub("", fold(text)).strip()


def _contains(text: str, term: str) -> bool:
    if term.lower() in text.lower():
        return True
    normalized_term = normalize(term)
    return bool(normalized_term) and normalized_term in normalize(text)


def matches_keyword(text: str, keyword: str) -> bool:
    """Check if text contains keyword or one of its synonyms.

    Both the raw lowercase substring and the normalized substring count as a
    hit, so "Jupiler 6 x 33 cl" matches the keyword "6x33".
    """
    if _contains(text, keyword):
        return True

    synonyms = KEYWORD_SYNONYMS.get(keyword.lower().strip(), [])
    return any(_contains(text, synonym) for synonym in synonyms)


def matches_any(text: str, keywords: Iterable[str]) -> bool:
    return any(matches_keyword(text, keyword) for keyword in keywords)


def apply_store_overrides(product: TargetProduct, store_name: str) -> TargetProduct:
    """Resolve a product's effective rules for one store.

    Override lists replace the product's lists wholesale; a missing override
    field keeps the base value. Store names compare case-insensitively.
    """
    if not product.store_overrides:
        return product

    overrides = {key.lower(): value for key, value in product.store_overrides.items()}
    override = overrides.get(store_name.lower())
    if override is None:
        return product

    updates = {
        field_name: value
        for field_name, value in override.model_dump().items()
        if value is not None
    }
    return product.model_copy(update=updates)


class ProductMatcher:
    """Decides whether a catalog record is a match for a target product.

    The matcher holds only the run's behaviour config, so one instance can
    filter any number of catalogs.
    """

    def __init__(self, behavior: Optional[ScrapingBehaviorConfig] = None):
        self.behavior = behavior or ScrapingBehaviorConfig()

    def matches(self, record: CatalogRecord, product: TargetProduct) -> bool:
        name = record.name
        full_text = f"{name} {record.metadata}".strip() if record.metadata else name
        folded_text = fold(full_text)

        # Brand identity gate
        has_required_keyword = False
        if product.required_keywords:
            has_required_keyword = matches_any(full_text, product.required_keywords)
            if not has_required_keyword:
                logger.debug(
                    'Product "%s" rejected: missing required brand keyword (%s)',
                    name, ", ".join(product.required_keywords),
                )
                return False

        # Packaging / size gate
        if product.must_contain and not matches_any(full_text, product.must_contain):
            logger.debug(
                'Product "%s" rejected: missing any of the must-contain keywords (%s)',
                name, ", ".join(product.must_contain),
            )
            return False

        if not has_required_keyword and not matches_any(full_text, CATEGORY_TERMS):
            logger.debug('Product "%s" rejected: not a beer product', name)
            return False

        if self.behavior.exclude_alcohol_free and any(
            marker in folded_text for marker in ALCOHOL_FREE_MARKERS
        ):
            logger.debug('Product "%s" rejected: alcohol-free variant', name)
            return False

        folded_name = fold(name)
        if _EXCLUDE_PATTERN.search(folded_name):
            logger.debug('Product "%s" rejected: contains exclude term', name)
            return False

        if product.preferred_keywords and not matches_any(full_text, product.preferred_keywords):
            logger.info(
                'Product "%s" accepted but missing preferred keywords (%s)',
                name, ", ".join(product.preferred_keywords),
            )

        return True

    def filter_catalog(self, catalog: Iterable[CatalogRecord],
                       product: TargetProduct) -> List[CatalogRecord]:
        """Return the records of a catalog that match, in catalog order."""
        return [record for record in catalog if self.matches(record, product)]
