"""Logging setup: stdlib handlers with a structlog processor chain."""

import logging
import sys
from typing import Optional

import structlog

from .config import Settings, get_settings


def resolve_log_level(settings: Settings) -> int:
    """Debug mode always logs at DEBUG."""
    if settings.app_debug:
        return logging.DEBUG
    return getattr(logging, settings.app_log_level.upper(), logging.INFO)


def use_json_renderer(settings: Settings) -> bool:
    """Production always renders JSON."""
    return settings.log_json or settings.is_production


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure logging to console using structlog."""
    settings = settings or get_settings()

    logging.basicConfig(
        level=resolve_log_level(settings),
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json_renderer(settings)
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
