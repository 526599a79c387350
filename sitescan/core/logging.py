"""
structlog setup for the API process and the crawler.

Analysis tasks bind `analysis_id` and `url` through structlog contextvars, so
every event a run emits (fetches, sitemap parsing, scoring) carries them.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from sitescan.core.config import get_settings

# Loggers that report every request the crawler makes
NOISY_LOGGERS = ("asyncio", "httpx", "httpcore")


def add_severity(logger: WrappedLogger, method: str, event_dict: EventDict) -> EventDict:
    """Upper-case `severity` field for log collectors that key on it."""
    event_dict["severity"] = "WARNING" if method == "warn" else method.upper()
    return event_dict


def build_processors(log_format: str) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_severity,
    ]
    if log_format == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging() -> None:
    settings = get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=build_processors(settings.LOG_FORMAT),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if settings.ENV == "production":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
