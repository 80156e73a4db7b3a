"""
Centralized logger configuration for pharmflow.

By default, uses Python's standard logging with the 'pharmflow' namespace.

Usage:
    from pharmflow.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Message")

    # Route everything through a custom logger (e.g., structlog)
    from pharmflow.core.logger import set_logger
    set_logger(structlog.get_logger())
"""

import logging
from typing import Any

_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all pharmflow components.

    Args:
        logger: Any object exposing debug/info/warning/error/exception.
                Pass None to go back to standard logging.
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "pharmflow") -> Any:
    """
    Get a logger instance.

    Returns the custom logger when one was set via set_logger(), otherwise a
    standard logger with the given name.
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def configure_default_logging(  # pragma: no cover
    level: int = logging.INFO,
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """Configure basic console logging for pharmflow."""
    logging.basicConfig(level=level, format=format_string)
    logging.getLogger("pharmflow").setLevel(level)
