"""Structured logging setup for kiln.

Every module logs through a module-level ``structlog.get_logger(__name__)``.
configure_logging() routes those events through the ``kiln`` stdlib logger
to stderr, so build reports on stdout stay readable.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

LOGGER_NAME = "kiln"


def configure_logging(
    *,
    log_level: str = "INFO",
    json_format: bool = False,
    add_timestamp: bool = True,
) -> None:
    """Configure structlog for a kiln command.

    Args:
        log_level: Minimum level for the ``kiln`` logger.
        json_format: Render JSON lines instead of console output.
        add_timestamp: Prefix events with an ISO timestamp.
    """
    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.format_exc_info,
    ]
    if add_timestamp:
        processors.insert(1, structlog.processors.TimeStamper(fmt="iso"))
    processors.append(
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    kiln_logger = logging.getLogger(LOGGER_NAME)
    kiln_logger.setLevel(log_level.upper())
    if not kiln_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        kiln_logger.addHandler(handler)
    kiln_logger.propagate = False
