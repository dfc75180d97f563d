"""structlog configuration shared by the scanner process and the API."""

from __future__ import annotations

import logging
import sys

import structlog

from .config import get_settings


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    if json_logs is None:
        json_logs = settings.log_json

    # Route stdlib loggers (web3, urllib3) through the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
