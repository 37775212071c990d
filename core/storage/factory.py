import logging
from typing import Optional

from core.storage.base import ResultStorage
from core.storage.file_storage import JsonFileStorage

logger = logging.getLogger(__name__)

BACKENDS = ("file", "database", "supabase")


def create_storage(settings) -> Optional[ResultStorage]:
    """Build the backend named by settings.STORAGE_BACKEND.

    Returns None when the backend cannot be configured (e.g. Supabase
    credentials are missing); results are then kept in memory only.

    Raises:
        ValueError: If STORAGE_BACKEND names an unknown backend
    """
    backend = settings.STORAGE_BACKEND
    if backend == "file":
        return JsonFileStorage(settings.RESULTS_FILE)

    if backend == "database":
        # importing the database layer creates its engine
        from core.storage.database_storage import DatabaseStorage
        return DatabaseStorage()

    if backend == "supabase":
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            logger.warning("Supabase environment variables are missing. Results will only be kept in memory.")
            return None
        from core.storage.supabase_storage import SupabaseStorage
        return SupabaseStorage(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)

    raise ValueError(f"Unknown storage backend '{backend}' (expected one of: {', '.join(BACKENDS)})")
