"""
Structured logging for the billing platform, using structlog directly.

Every billing cycle binds a ``cycle_id`` into the structlog context vars, so
log lines written by the per-subscription tasks of one cycle can be grouped.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

import structlog

from telehealth.platform.settings import settings


def setup_logging() -> None:
    """
    Configure stdlib logging and structlog from the observability settings.

    Safe to call more than once (worker processes and CLI commands each call it).
    """
    observability = settings.observability
    logging.basicConfig(format="%(message)s", level=observability.log_level.value)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if observability.enable_correlation_ids:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.THREAD_NAME]
            )
        )

    if observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def billing_cycle_context(trigger: str) -> Iterator[str]:
    """Bind a fresh ``cycle_id`` and the trigger to every log line inside the block."""
    cycle_id = uuid4().hex
    with structlog.contextvars.bound_contextvars(cycle_id=cycle_id, cycle_trigger=trigger):
        yield cycle_id


def get_audit_logger() -> structlog.stdlib.BoundLogger:
    """Logger for audit events; they are structured logs on the ``audit`` logger."""
    return structlog.get_logger("audit")


def log_audit_event(
    action: str,
    category: str,
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    **kwargs: Any,
) -> None:
    """Log an audit event as a structured log entry."""
    get_audit_logger().info(
        action,
        audit_category=category,
        audit_user_id=user_id,
        audit_resource_type=resource_type,
        audit_resource_id=resource_id,
        **kwargs,
    )
