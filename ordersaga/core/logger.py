"""
Centralized logger configuration for ordersaga.

By default, uses Python's standard logging under the 'ordersaga' namespace.
A custom logger (structlog, loguru, ...) can be installed process-wide.

Usage:
    from ordersaga.core.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Order confirmed")

    # Route everything through structlog instead
    import structlog
    from ordersaga.core.logger import set_logger
    set_logger(structlog.get_logger())
"""

import logging
from typing import Any

_custom_logger: Any = None


def set_logger(logger: Any) -> None:
    """
    Set a custom logger for all ordersaga components.

    Args:
        logger: A logger instance supporting debug/info/warning/error/exception.
                Pass None to go back to standard logging.
    """
    global _custom_logger
    _custom_logger = logger


def get_logger(name: str = "ordersaga") -> Any:
    """
    Get a logger instance.

    Returns the logger installed with set_logger() if any, otherwise a
    standard library logger with the given name.
    """
    if _custom_logger is not None:
        return _custom_logger

    logger = logging.getLogger(name)

    # Avoid "No handler found" warnings when the host app configures nothing
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def configure_default_logging(
    level: int | str = logging.INFO,
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """
    Configure basic console logging for ordersaga.

    Args:
        level: Logging level (default: INFO)
        format_string: Log message format
    """
    logging.basicConfig(level=level, format=format_string)
    logging.getLogger("ordersaga").setLevel(level)
