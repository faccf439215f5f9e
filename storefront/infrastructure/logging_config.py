"""Structured logging setup.

All modules log through ``structlog.get_logger()`` with key/value event
fields. This module wires structlog to the standard library so the
level from settings applies everywhere and request ids bound in the
middleware appear on every line.
"""

import logging
import sys

import structlog

from storefront.infrastructure.config import settings


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to ``settings.log_level``.
        json_output: Render JSON lines instead of the console renderer;
            defaults to ``settings.log_json``.
    """
    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json_output is None else json_output

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
