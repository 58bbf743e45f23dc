"""Structured logging for the CareCompanion backend using structlog."""

from __future__ import annotations

import logging
import os

import structlog
from structlog.types import FilteringBoundLogger

_CONFIGURED = False


def configure_structlog(force: bool = False) -> None:
    """Route stdlib logging through structlog with pretty or JSON output.

    ``LOG_FORMAT`` selects ``pretty`` (default) or ``json``; ``LOG_LEVEL``
    sets the root level.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    log_format = os.getenv("LOG_FORMAT", "pretty").lower()
    log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_colors = os.getenv("LOG_COLORS", "true").lower() in ("true", "1", "yes", "on")

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=log_colors)

    logging.root.handlers = []
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(log_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


configure_structlog()


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)


engine_logger = get_logger("carecompanion.engine")
api_logger = get_logger("carecompanion.api")
tools_logger = get_logger("carecompanion.tools")
