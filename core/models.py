# Domain types shared by the scraping core.
# Configuration types are pydantic models so config.json (camelCase keys) can be
# validated directly; records produced during a run are frozen dataclasses.

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form every backend stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Store(_ConfigModel):
    """A retailer website the tracker compares prices on."""

    name: str
    base_url: str = Field(alias="baseUrl")
    enabled: bool = True


class StoreOverride(_ConfigModel):
    """Per-store replacement for any of a product's keyword lists."""

    search_terms: Optional[List[str]] = Field(default=None, alias="searchTerms")
    required_keywords: Optional[List[str]] = Field(default=None, alias="requiredKeywords")
    must_contain: Optional[List[str]] = Field(default=None, alias="mustContain")
    preferred_keywords: Optional[List[str]] = Field(default=None, alias="preferredKeywords")


class TargetProduct(_ConfigModel):
    """A configured product searched for across every store.

    required_keywords and must_contain are OR-matched gates; preferred_keywords
    is only reported when missing.
    """

    name: str
    search_terms: List[str] = Field(default_factory=list, alias="searchTerms")
    required_keywords: List[str] = Field(default_factory=list, alias="requiredKeywords")
    must_contain: List[str] = Field(default_factory=list, alias="mustContain")
    preferred_keywords: List[str] = Field(default_factory=list, alias="preferredKeywords")
    store_overrides: Dict[str, StoreOverride] = Field(default_factory=dict, alias="storeOverrides")


class ScrapingBehaviorConfig(_ConfigModel):
    """Browser behaviour for a run. All durations are in milliseconds."""

    headless: bool = True
    timeout: int = 30000
    wait_after_page_load: int = Field(default=2000, alias="waitAfterPageLoad")
    random_delay_min: int = Field(default=1000, alias="randomDelayMin")
    random_delay_max: int = Field(default=3000, alias="randomDelayMax")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="userAgent")
    exclude_alcohol_free: bool = Field(default=False, alias="excludeAlcoholFree")


class CatalogConfig(_ConfigModel):
    """Top-level shape of config.json."""

    supermarkets: List[Store] = Field(default_factory=list)
    products: List[TargetProduct] = Field(default_factory=list)
    scraping: ScrapingBehaviorConfig = Field(default_factory=ScrapingBehaviorConfig)

    def enabled_stores(self) -> List[Store]:
        return [store for store in self.supermarkets if store.enabled]


@dataclass(frozen=True)
class CatalogRecord:
    """One listing extracted from a store page, before any matching."""

    name: str
    price_text: str
    link: str
    price_value: Optional[float] = None
    image_url: Optional[str] = None
    metadata: str = ""
    promo_tag: Optional[str] = None

    def identity(self) -> tuple:
        """Key used to detect the same listing reached twice during pagination."""
        return (self.name.lower(), self.link)


@dataclass(frozen=True)
class MatchedResult:
    """A catalog record confirmed to satisfy a target product's rules."""

    product_name: str
    store: str
    price_text: str
    target_product: str
    link: str
    price_value: Optional[float] = None
    image_url: Optional[str] = None
    metadata: str = ""
    promo_tag: Optional[str] = None
    available: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_record(cls, record: CatalogRecord, store: str, target_product: str,
                    timestamp: Optional[datetime] = None) -> "MatchedResult":
        return cls(
            product_name=record.name,
            store=store,
            price_text=record.price_text,
            target_product=target_product,
            link=record.link,
            price_value=record.price_value,
            image_url=record.image_url,
            metadata=record.metadata,
            promo_tag=record.promo_tag,
            timestamp=timestamp or utcnow(),
        )

    def dedupe_key(self) -> tuple:
        return (self.product_name, self.store, self.link)

    def to_record(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Serialize to the persisted/broadcast record shape."""
        return {
            "product_name": self.product_name,
            "supermarket": self.store,
            "price": self.price_text,
            "price_value": self.price_value,
            "target_product": self.target_product,
            "link": self.link,
            "timestamp": self.timestamp.isoformat(),
            "available": self.available,
            "image_url": self.image_url,
            "promo_tag": self.promo_tag,
            "scraping_session_id": session_id,
        }

    @classmethod
    def from_stored(cls, data: Dict[str, Any]) -> "MatchedResult":
        """Inverse of to_record; tolerates price_value stored as a string."""
        price_value = data.get("price_value")
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        return cls(
            product_name=data["product_name"],
            store=data["supermarket"],
            price_text=data.get("price") or "",
            target_product=data.get("target_product") or "",
            link=data.get("link") or "",
            price_value=float(price_value) if price_value not in (None, "") else None,
            image_url=data.get("image_url"),
            promo_tag=data.get("promo_tag"),
            available=bool(data.get("available", True)),
            timestamp=timestamp or utcnow(),
        )
