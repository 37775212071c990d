import os
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables with defaults.

    Everything that varies between a laptop and a deployment lives here; the
    product catalog itself is in the JSON file at SCRAPER_CONFIG_PATH.
    """

    # Project metadata
    PROJECT_NAME = "Drinks Price Tracker"
    PROJECT_VERSION = "0.1.0"

    # Catalog configuration
    SCRAPER_CONFIG_PATH = os.getenv("SCRAPER_CONFIG_PATH", "config.json")

    # Persistence: "file", "database" or "supabase"
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "file").strip().lower()
    RESULTS_FILE = os.getenv("RESULTS_FILE", os.path.join("data", "latest-results.json"))

    # Database Settings
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "3306")
    DB_NAME = os.getenv("DB_NAME", "price_tracker")
    DB_USER = os.getenv("DB_USER", "user")
    DB_PASS = os.getenv("DB_PASSWORD", "password")
    DATABASE_URL_OVERRIDE = os.getenv("DATABASE_URL")

    # Supabase (PostgREST) Settings
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    # Debug artifacts (screenshots and HTML dumps of listing pages)
    DEBUG = _env_flag("DEBUG")
    DEBUG_OUTPUT_DIR = os.getenv("DEBUG_OUTPUT_DIR", "debug_output")

    # API server
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "3000"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def DATABASE_URL(self) -> str:
        """SQLAlchemy connection string; MySQL unless DATABASE_URL is set."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def debug_dir(self):
        """Directory for debug artifacts, or None when debugging is off."""
        return self.DEBUG_OUTPUT_DIR if self.DEBUG else None


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


# For direct access in other modules
settings = get_settings()
