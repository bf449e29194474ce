"""Logging setup for job_monitor.

Modules log through ``logging.getLogger(__name__)``; the server and CLI call
``setup_logging()`` once to attach a rich console handler to the package logger.
"""

import logging

from rich.logging import RichHandler

PACKAGE_LOGGER = "job_monitor"


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a RichHandler to the ``job_monitor`` logger.

    Safe to call more than once; the handler is only installed the first time.

    Args:
        level: Level name (e.g. "DEBUG") or numeric logging level

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the package logger."""
    if not name.startswith(PACKAGE_LOGGER):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
