import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from core.errors import StorageError
from core.models import MatchedResult
from core.storage.base import ResultStorage

logger = logging.getLogger(__name__)

TABLE = "scraped_products"


class SupabaseStorage(ResultStorage):
    """Stores runs in a hosted Supabase table through its PostgREST API.

    The service role key bypasses row level security, so this backend is for
    server-side use only.
    """

    name = "supabase"

    def __init__(self, url: str, service_key: str, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{TABLE}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, params: Optional[Dict[str, str]] = None,
                 json: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self.session.request(method, self.endpoint, params=params, json=json,
                                            headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Supabase request failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StorageError(f"Supabase returned invalid JSON: {e}") from e

    def save_results(self, results: List[MatchedResult], session_id: Optional[str] = None) -> str:
        session_id = session_id or str(uuid.uuid4())
        rows = [result.to_record(session_id) for result in results]
        if rows:
            # Single batch insert
            self._request("POST", json=rows, headers={"Prefer": "return=minimal"})
        logger.info("Results saved to Supabase (%d products, session: %s)", len(rows), session_id)
        return session_id

    def _latest_row(self) -> Optional[Dict[str, Any]]:
        rows = self._request("GET", params={
            "select": "scraping_session_id,timestamp",
            "order": "timestamp.desc",
            "limit": "1",
        })
        return rows[0] if rows else None

    def load_latest(self) -> List[MatchedResult]:
        latest = self._latest_row()
        if not latest:
            logger.info("No previous results found in Supabase, starting fresh")
            return []

        session_id = latest["scraping_session_id"]
        rows = self._request("GET", params={
            "select": "*",
            "scraping_session_id": f"eq.{session_id}",
            "order": "timestamp.asc",
        }) or []
        logger.info("Loaded %d results from Supabase (session: %s)", len(rows), session_id)
        return [MatchedResult.from_stored(row) for row in rows]

    def last_update_time(self) -> Optional[datetime]:
        latest = self._latest_row()
        if not latest or not latest.get("timestamp"):
            return None
        return datetime.fromisoformat(latest["timestamp"].replace("Z", "+00:00"))
