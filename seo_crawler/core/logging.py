"""
Structured logging using structlog.

JSON lines in production, colored console in development. Every event
emitted while a crawl runs carries that crawl's id and domain through
structlog's contextvars.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict

from seo_crawler.core.config import get_settings

NOISY_LOGGERS = ("asyncio", "httpx", "httpcore")


def add_severity(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    """Uppercase `severity` field for log aggregators that key on it."""
    event_dict["severity"] = method.upper() if method != "exception" else "ERROR"
    return event_dict


def configure_logging() -> None:
    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_severity,
    ]

    if settings.LOG_FORMAT == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=settings.DEBUG or sys.stdout.isatty())]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    if settings.ENV == "production":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def crawl_log_context(domain: str) -> Iterator[str]:
    """Bind crawl_id and domain to every log event inside the block."""
    crawl_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(crawl_id=crawl_id, domain=domain):
        yield crawl_id
