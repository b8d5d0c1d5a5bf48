"""
Central task registration module for Celery.

The billing tasks wrap the async billing cycle service with ``asyncio.run``
and return plain dicts as task results.
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog

from telehealth.platform.billing.cycle.factory import build_billing_cycle_service
from telehealth.platform.billing.exceptions import BillingCycleError
from telehealth.platform.billing.mappers import ensure_utc
from telehealth.platform.celery_app import celery_app
from telehealth.platform.db import dispose_engine
from telehealth.platform.settings import settings

logger = structlog.get_logger(__name__)


def billing_cycle_time_limit() -> int:
    """Hard time limit for one cycle, leaving room for every retry delay."""
    billing = settings.billing
    retry_window = billing.retry_delay_seconds * (billing.max_payment_attempts - 1)
    return settings.celery.task_time_limit + retry_window


async def _run_billing_cycle() -> dict[str, Any]:
    service = build_billing_cycle_service()
    try:
        cycle = await service.run_cycle(trigger="scheduled")
    except BillingCycleError as exc:
        logger.error("billing.task.cycle_failed", error=exc.message)
        return {"status": "failed", "error": exc.to_dict()}
    finally:
        # Each task gets a fresh event loop; pooled connections must not outlive it
        await dispose_engine()
    return {"status": "ok", **cycle.summary()}


async def _billing_cycle_report(start: datetime | None, end: datetime | None) -> dict[str, Any]:
    service = build_billing_cycle_service()
    try:
        report = await service.get_billing_cycle_report(start, end)
    finally:
        await dispose_engine()
    return report.model_dump(mode="json")


@celery_app.task(
    name="billing.run_cycle",
    # Acked on receipt, so a cycle is never redelivered while it is still running
    acks_late=False,
    time_limit=billing_cycle_time_limit(),
    soft_time_limit=billing_cycle_time_limit() - 60,
)
def run_billing_cycle_task() -> dict[str, Any]:
    """Periodic task running one automated billing cycle."""
    return asyncio.run(_run_billing_cycle())


@celery_app.task(name="billing.cycle_report")
def billing_cycle_report_task(start: str | None = None, end: str | None = None) -> dict[str, Any]:
    """Build a billing cycle report. ``start`` and ``end`` are ISO-8601 strings."""
    start_dt = ensure_utc(datetime.fromisoformat(start)) if start else None
    end_dt = ensure_utc(datetime.fromisoformat(end)) if end else None
    return asyncio.run(_billing_cycle_report(start_dt, end_dt))


__all__ = [
    "run_billing_cycle_task",
    "billing_cycle_report_task",
]
