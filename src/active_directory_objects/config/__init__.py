"""Configuration for Active Directory objects."""

from .models import (
    Config,
    ActiveDirectoryConfig,
    SecurityConfig,
    PerformanceConfig,
    LoggingConfig,
    DEFAULT_FIRST_SITE_NAME,
)
from .loader import load_config, validate_config

__all__ = [
    "Config",
    "ActiveDirectoryConfig",
    "SecurityConfig",
    "PerformanceConfig",
    "LoggingConfig",
    "DEFAULT_FIRST_SITE_NAME",
    "load_config",
    "validate_config",
]
