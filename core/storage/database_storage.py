import logging
from datetime import datetime
from typing import List, Optional

import sqlalchemy.exc

from core.database import operations
from core.errors import StorageError
from core.models import MatchedResult
from core.storage.base import ResultStorage

logger = logging.getLogger(__name__)


class DatabaseStorage(ResultStorage):
    """Stores runs in the scraping_sessions / scraped_products tables."""

    name = "database"

    def __init__(self, session_factory=None, bind=None):
        self.session_factory = session_factory or operations.SessionLocal
        self.bind = bind

    def init_schema(self) -> None:
        try:
            operations.init_db(self.bind)
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize database: {e}") from e

    def save_results(self, results: List[MatchedResult], session_id: Optional[str] = None) -> str:
        db = self.session_factory()
        try:
            run = operations.create_run(db, results, run_id=session_id)
            logger.info("Results saved to database (%d products, session: %s)", len(results), run.id)
            return run.id
        except sqlalchemy.exc.SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Database error while saving results: {e}") from e
        finally:
            db.close()

    def load_latest(self) -> List[MatchedResult]:
        db = self.session_factory()
        try:
            run = operations.get_latest_run(db)
            if run is None:
                logger.info("No previous results found in database, starting fresh")
                return []

            rows = operations.get_run_products(db, run.id)
            logger.info("Loaded %d results from database (session: %s)", len(rows), run.id)
            return [
                MatchedResult(
                    product_name=row.product_name,
                    store=row.supermarket,
                    price_text=row.price,
                    target_product=row.target_product or "",
                    link=row.link or "",
                    price_value=row.price_value,
                    image_url=row.image_url,
                    promo_tag=row.promo_tag,
                    available=bool(row.available),
                    timestamp=row.timestamp or run.timestamp,
                )
                for row in rows
            ]
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise StorageError(f"Database error while loading results: {e}") from e
        finally:
            db.close()

    def last_update_time(self) -> Optional[datetime]:
        db = self.session_factory()
        try:
            run = operations.get_latest_run(db)
            return run.timestamp if run else None
        except sqlalchemy.exc.SQLAlchemyError as e:
            raise StorageError(f"Database error while reading last update: {e}") from e
        finally:
            db.close()
