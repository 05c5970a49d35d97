"""
Logging configuration for command-line use.

Library modules only create loggers; handlers are attached here, once,
by the entry point.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from src.config import LOG_LEVEL

LOGGER_NAME = "src"


def configure_logging(level: Optional[str] = None, console: Optional[Console] = None) -> logging.Logger:
    """
    Attach a RichHandler to the package logger.

    Args:
        level: level name (default: HISTORY_LOG_LEVEL)
        console: rich console to write to (default: stderr)

    Returns:
        the configured package logger
    """
    level_name = (level or LOG_LEVEL).upper()
    numeric = logging.getLevelName(level_name)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level_name}")

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(numeric)

    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    return package_logger
