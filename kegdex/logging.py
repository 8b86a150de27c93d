"""
Logging configuration module for kegdex.

Configures structlog with appropriate processors. Output goes to stderr
because stdout carries the MCP stdio transport.
"""

import logging
import sys

import structlog

from .config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for the server and the editor loop.

    Args:
        level: Level name such as "debug"; defaults to settings.log_level.
            Unknown names fall back to INFO.
    """
    numeric = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
