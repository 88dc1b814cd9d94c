"""Logging setup for Active Directory objects."""

import logging
import sys
from typing import Optional

from ..config.models import LoggingConfig

ROOT_LOGGER_NAME = "active-directory-objects"


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure the package root logger.

    Args:
        config: Logging configuration, defaults are used when omitted

    Returns:
        The configured root logger of the package
    """
    config = config or LoggingConfig()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    # setup_logging may be called more than once per process
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config.file:
        file_handler = logging.FileHandler(config.file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger of the package root logger."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_operations_logger = get_logger("operations")


def log_ldap_operation(operation: str, target: str, success: bool, details: str = "") -> None:
    """
    Log one directory write operation.

    Args:
        operation: Operation name (add, delete, modify, move)
        target: Distinguished name the operation applied to
        success: Whether the directory accepted the operation
        details: Additional information
    """
    message = f"{operation} [{target}]"
    if details:
        message += f": {details}"

    if success:
        _operations_logger.info(message)
    else:
        _operations_logger.error(message)
