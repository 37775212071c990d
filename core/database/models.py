# This file defines the database schema for persisted scraping runs using
# SQLAlchemy's ORM. A run (scraping session) owns the matched products it found.

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship
import uuid
from core.models import utcnow

# Base class for all ORM models
Base = declarative_base()


class ScrapeRun(Base):
    """One completed scraping run across the selected stores.

    Runs are the unit the API restores on startup: the newest run is the
    "latest results".
    """
    __tablename__ = "scraping_sessions"

    # String UUIDs keep the schema portable between MySQL and SQLite
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Indexed so the latest run is a cheap lookup
    timestamp = Column(DateTime, default=utcnow, index=True)

    total_products = Column(Integer, default=0)

    products = relationship("ScrapedProduct", back_populates="run", cascade="all, delete-orphan")


class ScrapedProduct(Base):
    """A matched listing captured during a run.

    Columns mirror the persisted record shape, so the same dictionaries are
    written to the JSON file, the database and Supabase.
    """
    __tablename__ = "scraped_products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    scraping_session_id = Column(String(36), ForeignKey("scraping_sessions.id"), index=True)

    product_name = Column(String(255), nullable=False)
    supermarket = Column(String(100), nullable=False, index=True)

    # Price exactly as the store printed it, plus the parsed value when available
    price = Column(String(50), nullable=False)
    price_value = Column(Float, nullable=True)

    target_product = Column(String(255), index=True)
    link = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow)
    available = Column(Boolean, default=True)
    image_url = Column(Text, nullable=True)
    promo_tag = Column(String(255), nullable=True)

    run = relationship("ScrapeRun", back_populates="products")
