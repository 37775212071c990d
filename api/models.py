from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


# Request Models
class ScrapeRequest(BaseModel):
    """Request model for starting a scrape run."""

    stores: Optional[Union[List[str], str]] = Field(
        default=None,
        description="Stores to scrape, as a list or a comma-separated string",
    )
    store: Optional[str] = Field(
        default=None, description="A single store to scrape"
    )

    def requested_stores(self) -> List[str]:
        requested: List[str] = []
        if isinstance(self.stores, str):
            requested.append(self.stores)
        elif self.stores:
            requested.extend(self.stores)
        if self.store:
            requested.append(self.store)
        return requested


# Response Models
class ResultRecord(BaseModel):
    """API representation of one matched product."""

    product_name: str
    supermarket: str
    price: str
    price_value: Optional[float] = None
    target_product: str
    link: str
    timestamp: datetime
    available: bool = True
    image_url: Optional[str] = None
    promo_tag: Optional[str] = None
    scraping_session_id: Optional[str] = None


class ResultsResponse(BaseModel):
    is_scraping: bool
    results: Dict[str, List[ResultRecord]]
    total_count: int
    last_updated: Optional[datetime] = None


class ScrapeResponse(BaseModel):
    status: str
    message: str


class StatusResponse(BaseModel):
    is_scraping: bool


class StoreInfo(BaseModel):
    """API representation of a configured store."""

    name: str
    base_url: str
    enabled: bool
    supported: bool

    class Config:
        from_attributes = True
