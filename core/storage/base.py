import abc
from datetime import datetime
from typing import List, Optional

from core.models import MatchedResult


class ResultStorage(abc.ABC):
    """Where finished runs are kept between processes.

    Backends raise StorageError for any failure of the underlying store; the
    runner and the API treat that as degraded mode, not as a failed run.
    """

    name = "storage"

    @abc.abstractmethod
    def save_results(self, results: List[MatchedResult], session_id: Optional[str] = None) -> str:
        """Persist a run and return its session id.

        Raises:
            StorageError: If the backend cannot store the run
        """
        raise NotImplementedError

    @abc.abstractmethod
    def load_latest(self) -> List[MatchedResult]:
        """Return the matches of the newest stored run, or [] when none exists."""
        raise NotImplementedError

    @abc.abstractmethod
    def last_update_time(self) -> Optional[datetime]:
        raise NotImplementedError
