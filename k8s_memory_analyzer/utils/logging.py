"""Logging configuration and setup utilities.

Modules log through ``logging.getLogger(__name__)``; the CLI calls
:func:`setup_logging` once to render those records with rich.
"""
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "k8s_memory_analyzer"


def setup_logging(
    level: int = logging.INFO, console: Optional[Console] = None
) -> logging.Logger:
    """Attach a RichHandler to the package logger and set its level."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=level <= logging.DEBUG,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
