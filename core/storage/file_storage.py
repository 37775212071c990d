import json
import logging
import os
import uuid
from datetime import datetime
from typing import List, Optional

from core.errors import StorageError
from core.models import MatchedResult, utcnow
from core.storage.base import ResultStorage

logger = logging.getLogger(__name__)


class JsonFileStorage(ResultStorage):
    """Keeps the latest run as a single JSON document on disk.

    Document shape: {"scraping_session_id", "timestamp", "results": [records]}.
    Each save replaces the previous run.
    """

    name = "file"

    def __init__(self, path: str):
        self.path = path

    def save_results(self, results: List[MatchedResult], session_id: Optional[str] = None) -> str:
        session_id = session_id or str(uuid.uuid4())
        document = {
            "scraping_session_id": session_id,
            "timestamp": utcnow().isoformat(),
            "results": [result.to_record(session_id) for result in results],
        }

        directory = os.path.dirname(self.path)
        tmp_path = f"{self.path}.tmp"
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write results to {self.path}: {e}") from e

        logger.info("Results saved to %s (%d products, session: %s)", self.path, len(results), session_id)
        return session_id

    def _read(self) -> Optional[dict]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read results from {self.path}: {e}") from e

    def load_latest(self) -> List[MatchedResult]:
        document = self._read()
        if not document:
            logger.info("No previous results found in %s, starting fresh", self.path)
            return []
        try:
            return [MatchedResult.from_stored(record) for record in document.get("results", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Malformed results file {self.path}: {e}") from e

    def last_update_time(self) -> Optional[datetime]:
        document = self._read()
        if not document or not document.get("timestamp"):
            return None
        try:
            return datetime.fromisoformat(document["timestamp"])
        except ValueError:
            return None
