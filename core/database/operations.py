# This file contains the database access layer: engine and session setup,
# database creation for MySQL, and the queries used to persist scraping runs.

import logging
import uuid
from typing import Generator, List, Optional

import pymysql
import sqlalchemy.exc
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from config.settings import get_settings
from core.models import MatchedResult
from .models import Base, ScrapedProduct, ScrapeRun

logger = logging.getLogger(__name__)

# Get application settings
settings = get_settings()

# The engine owns the connection pool; nothing connects until first use
engine = create_engine(settings.DATABASE_URL)

# Sessions encapsulate one unit of work each
SessionLocal = sessionmaker(bind=engine)


def ensure_database_exists(bind=None):
    """Create the MySQL database when the server reports it unknown.

    Other backends (e.g. SQLite) need no preparation.
    """
    bind = bind or engine
    if bind.url.get_backend_name() != "mysql":
        return

    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        return
    except sqlalchemy.exc.OperationalError as e:
        if "Unknown database" not in str(e):
            logger.error("Database connection error: %s", e)
            raise

    url = make_url(str(bind.url))
    try:
        connection = pymysql.connect(
            host=url.host or settings.DB_HOST,
            user=url.username or settings.DB_USER,
            password=url.password or settings.DB_PASS,
            port=int(url.port or settings.DB_PORT),
        )
    except pymysql.Error as conn_err:
        logger.error("Failed to connect to MySQL server: %s", conn_err)
        raise

    try:
        with connection.cursor() as cursor:
            cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{url.database}`")
        logger.info("Created database '%s'", url.database)
    except pymysql.Error as db_err:
        logger.error("Failed to create database: %s", db_err)
        raise
    finally:
        connection.close()


def init_db(bind=None):
    """Create the scraping tables if they don't exist."""
    bind = bind or engine
    ensure_database_exists(bind)
    Base.metadata.create_all(bind=bind)


def get_db() -> Generator:
    """Create and yield a database session, closing it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_run(db, results: List[MatchedResult], run_id: Optional[str] = None) -> ScrapeRun:
    """Persist one run and its matched products in a single transaction.

    Args:
        db: Database session
        results: Matches of the run, in arrival order
        run_id: Explicit run id; generated when omitted

    Returns:
        The stored run
    """
    run = ScrapeRun(id=run_id or str(uuid.uuid4()), total_products=len(results))
    db.add(run)

    for result in results:
        db.add(ScrapedProduct(
            scraping_session_id=run.id,
            product_name=result.product_name,
            supermarket=result.store,
            price=result.price_text,
            price_value=result.price_value,
            target_product=result.target_product,
            link=result.link,
            timestamp=result.timestamp,
            available=result.available,
            image_url=result.image_url,
            promo_tag=result.promo_tag,
        ))

    db.commit()
    db.refresh(run)
    return run


def get_latest_run(db) -> Optional[ScrapeRun]:
    return db.query(ScrapeRun).order_by(ScrapeRun.timestamp.desc()).first()


def get_run_products(db, run_id: str) -> List[ScrapedProduct]:
    return (
        db.query(ScrapedProduct)
        .filter(ScrapedProduct.scraping_session_id == run_id)
        .order_by(ScrapedProduct.timestamp.asc())
        .all()
    )
