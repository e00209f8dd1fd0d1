"""
Structured Logging with Structlog.

JSON logs by default (console rendering for local runs). Purchase and identity
tokens grant access to paid content, so they are masked before rendering.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from entitlement_sync.config import settings

# Keys whose values are bearer-equivalent secrets
SENSITIVE_KEYS = frozenset({"purchase_token", "id_token", "authorization", "instance_id"})
VISIBLE_SUFFIX = 4


def mask_secret(value: object) -> str:
    """Keep only the last few characters, enough to correlate log lines."""
    text = str(value)
    if len(text) <= VISIBLE_SUFFIX:
        return "***"
    return f"***{text[-VISIBLE_SUFFIX:]}"


def mask_sensitive_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = mask_secret(event_dict[key])
    return event_dict


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", settings.service_name)
    event_dict.setdefault("version", settings.api_version)
    return event_dict


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog over the standard library logger.

    Args:
        level: Log level name, defaults to settings.log_level
        log_format: "json" or "console", defaults to settings.log_format

    A JSON line looks like:
    {
        "event": "reconciliation_pass_completed",
        "level": "info",
        "timestamp": "2026-10-19T12:00:00.123456Z",
        "logger": "entitlement_sync.services.reconciliation",
        "service": "entitlement-sync",
        "user_id": "user-123",
        "records": 2,
        ...
    }
    """
    level_name = (level or settings.log_level).upper()
    renderer_name = log_format or settings.log_format

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_name)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        mask_sensitive_values,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if renderer_name == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**context: Any) -> Iterator[None]:
    """
    Bind context variables for every log line inside the block.

    Usage:
        with log_context(user_id=user_id):
            logger.info("reconciliation_pass_started")

    Nested blocks restore the outer values on exit.
    """
    with structlog.contextvars.bound_contextvars(**context):
        yield
