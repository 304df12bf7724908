"""
Structured Logging with Structlog.

Every event carries the service, its version and the StoreKit environment, so
logs from an Xcode test run and a sandbox run can be told apart. Purchase and
transaction identifiers are bound per operation with ``log_context``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from entitlements.config import settings

# Libraries that log every validator round trip at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp service identity and StoreKit environment on each entry."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    event_dict["storekit_environment"] = settings.storekit_environment
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog over the standard library logger.

    ``LOG_FORMAT=json`` emits one object per line with tracebacks as structured
    frames; any other value uses the coloured console renderer, which prints
    tracebacks itself.
    """
    level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind identifiers to every log entry emitted inside the block.

    ``None`` values are skipped. Values bound by an outer block are restored on
    exit, so a transaction context nested in a purchase context keeps the
    product ID afterwards.

    Usage:
        with log_context(product_id=product.id):
            logger.info("purchase_started")
    """
    bound = {key: value for key, value in kwargs.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield
