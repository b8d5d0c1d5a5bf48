"""
Celery application configuration.

Billing cycles run on their own ``billing`` queue. Start the worker for that
queue with ``--concurrency=1`` so scheduled cycles run one after another.
"""

from typing import Any

import structlog
from celery import Celery
from celery.signals import worker_process_init
from kombu import Queue

from telehealth.platform.logging import setup_logging
from telehealth.platform.settings import settings

# Create Celery application
celery_app = Celery(
    "telehealth_platform",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["telehealth.platform.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    # Task routing
    task_routes={
        "billing.*": {"queue": "billing"},
    },
    # Queue configuration
    task_default_queue="default",
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("billing", routing_key="billing"),
    ),
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task result settings
    result_expires=86400,  # 1 day
    task_track_started=True,
    task_time_limit=settings.celery.task_time_limit,
    task_soft_time_limit=settings.celery.task_soft_time_limit,
    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)


@worker_process_init.connect  # type: ignore[misc]
def configure_worker_logging(**kwargs: Any) -> None:
    """Configure structlog in every worker process."""
    setup_logging()


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the periodic billing cycle."""
    logger = structlog.get_logger(__name__)

    if not settings.billing.scheduler_enabled:
        logger.info("celery.billing_cycle.disabled")
        return

    from telehealth.platform.tasks import run_billing_cycle_task

    interval = float(settings.billing.cycle_interval_seconds)
    sender.add_periodic_task(
        interval,
        run_billing_cycle_task.s(),
        name="billing-run-cycle",
    )
    logger.info("celery.billing_cycle.scheduled", interval_seconds=interval)


__all__ = ["celery_app"]
