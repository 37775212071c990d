import json
import logging
import os
from typing import Optional

from pydantic import ValidationError

from config.settings import get_settings
from core.errors import ConfigError
from core.models import CatalogConfig

logger = logging.getLogger(__name__)


def load_config(path: Optional[str] = None) -> CatalogConfig:
    """Load and validate the catalog configuration.

    Args:
        path: JSON file to read; defaults to settings.SCRAPER_CONFIG_PATH

    Returns:
        The validated configuration

    Raises:
        ConfigError: If the file is missing, is not JSON, or fails validation
    """
    config_path = path or get_settings().SCRAPER_CONFIG_PATH
    if not os.path.exists(config_path):
        logger.error("Config file not found at %s", config_path)
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Failed to read configuration: %s", e)
        raise ConfigError(f"Could not read {config_path}: {e}") from e

    try:
        config = CatalogConfig.model_validate(raw)
    except ValidationError as e:
        logger.error("Invalid configuration in %s: %s", config_path, e)
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

    logger.info("Configuration loaded successfully (%d stores, %d products)",
                len(config.supermarkets), len(config.products))
    return config
