# Exception hierarchy shared by the scraping core, the CLI and the API.
# Only SessionInitError and UnsupportedStoreError end a store's run on their own;
# everything else is handled inside the session controller.


class ScraperError(Exception):
    """Base class for all scraping failures raised by this project."""


class ConfigError(ScraperError):
    """The catalog configuration file is missing or invalid."""


class SessionInitError(ScraperError):
    """The browser or its first context could not be created."""

    def __init__(self, store_name: str, message: str):
        super().__init__(f"Failed to initialize browser for {store_name}: {message}")
        self.store_name = store_name


class UnsupportedStoreError(ScraperError):
    """No site adapter is registered for the requested store name."""

    def __init__(self, store_name: str):
        super().__init__(f"No scraper available for {store_name}")
        self.store_name = store_name


class BotDetectedError(ScraperError):
    """The store served a block or challenge page instead of listings."""

    def __init__(self, store_name: str, url: str = ""):
        detail = f" at {url}" if url else ""
        super().__init__(f"Bot detection suspected for {store_name}{detail}")
        self.store_name = store_name
        self.url = url


class CatalogLoadError(ScraperError):
    """The adapter could not produce any listing container after all fallbacks."""


class StorageError(ScraperError):
    """A persistence backend could not save or load results."""
