# Typed events pushed through the result channel during a run.
# Each event renders itself as the JSON message broadcast to WebSocket clients.

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.models import MatchedResult

GroupedResults = Dict[str, List[MatchedResult]]


def serialize_grouped(grouped: GroupedResults) -> Dict[str, List[Dict[str, Any]]]:
    return {key: [result.to_record() for result in results] for key, results in grouped.items()}


@dataclass(frozen=True)
class StatusEvent:
    """The run started, or a store began processing."""

    status: str
    message: str
    store: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        message = {"type": "status", "status": self.status, "message": self.message}
        if self.store:
            message["supermarket"] = self.store
        return message


@dataclass(frozen=True)
class BatchEvent:
    """New matches for one product at one store, with the regrouped totals."""

    store: str
    target_product: str
    new_results: List[MatchedResult]
    total_count: int
    grouped: GroupedResults = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "progress",
            "supermarket": self.store,
            "count": len(self.new_results),
            "total_count": self.total_count,
            "results": serialize_grouped(self.grouped),
            "message": f"Found {len(self.new_results)} result(s) for {self.target_product}",
        }


@dataclass(frozen=True)
class StoreErrorEvent:
    """One store failed; the run continues with the next store."""

    store: str
    error: str

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "error",
            "supermarket": self.store,
            "message": f"Failed to scrape {self.store}",
            "error": self.error,
        }


@dataclass(frozen=True)
class CompleteEvent:
    total_count: int
    grouped: GroupedResults = field(default_factory=dict)
    session_id: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "complete",
            "status": "completed",
            "message": "Scraping completed!",
            "results": serialize_grouped(self.grouped),
            "total_count": self.total_count,
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class FailedEvent:
    """The run as a whole could not finish."""

    error: str

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "error",
            "status": "error",
            "message": "Scraping failed",
            "error": self.error,
        }
