"""Configuration loading and validation."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .models import Config

logger = logging.getLogger("active-directory-objects.config")

CONFIG_PATH_ENV = "AD_OBJECTS_CONFIG"

# environment variable -> key under "active_directory"
ENV_OVERRIDES = {
    "AD_SERVER": "server",
    "AD_DOMAIN": "domain",
    "AD_BIND_DN": "bind_dn",
    "AD_PASSWORD": "password",
}


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file. Falls back to the
                     AD_OBJECTS_CONFIG environment variable.

    Returns:
        Parsed configuration

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If no path was given at all
    """
    config_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    if not config_path:
        raise ValueError(f"No configuration path given and {CONFIG_PATH_ENV} is not set")

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    ad_section = data.setdefault("active_directory", {})
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            ad_section[key] = value

    config = Config.model_validate(data)
    logger.info(f"Configuration loaded from {config_path}")
    return config


def validate_config(config: Config) -> None:
    """
    Check settings that the models cannot validate on their own.

    Raises:
        ValueError: If the configuration is inconsistent
    """
    ad = config.active_directory
    if ad.bind_dn and not ad.password:
        raise ValueError("bind_dn is set but no password was given")

    page_size = config.performance.page_size
    if page_size < 1 or page_size > 1000:
        raise ValueError(f"page_size must be between 1 and 1000, got {page_size}")

    if ad.use_ssl and ad.port == 389:
        logger.warning("use_ssl is enabled but port is 389; LDAPS normally listens on 636")
