"""
Logging configuration module for structured logging.

This module configures Lockguard's logging system using structlog. It
provides JSON output for production log shippers and human-readable console
output for development.

The logging configuration includes:
- ISO timestamps
- Log level inclusion
- JSON/Console output selected by settings
- Logger caching
"""

import logging
from typing import Optional

import structlog

from lockguard.core.config.settings import get_settings


def configure_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configures structlog for the process.

    Explicit arguments win over the values loaded from ``Settings``
    (``LOCKGUARD_LOG_LEVEL`` / ``LOCKGUARD_LOG_JSON``).
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    use_json = settings.log_json if json_logs is None else json_logs

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    processors = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Package-level logger for modules that do not need their own name
logger = structlog.get_logger("lockguard")
