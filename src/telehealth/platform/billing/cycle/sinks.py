"""
Audit and notification adapters for the billing cycle.

Side effects are best-effort: once a subscription's state change is written,
a failing audit or notification call is logged and swallowed.
"""

import structlog

from telehealth.platform.billing.core.models import BillingRecord
from telehealth.platform.billing.cycle.protocols import AuditSink, NotificationSink
from telehealth.platform.logging import log_audit_event

logger = structlog.get_logger(__name__)

AUDIT_CATEGORY = "billing"


class StructlogAuditSink:
    """Audit sink writing billing events to the ``audit`` structlog logger."""

    def __init__(self, category: str = AUDIT_CATEGORY) -> None:
        self.category = category

    async def log_payment_event(
        self,
        user_id: str,
        event_type: str,
        entity_id: str,
        outcome: str,
        detail: str | None = None,
    ) -> None:
        log_audit_event(
            action=event_type,
            category=self.category,
            user_id=user_id,
            resource_type="billing",
            resource_id=entity_id,
            outcome=outcome,
            detail=detail,
        )


class LoggingNotificationSink:
    """Notification sink that only logs what would have been sent."""

    async def notify_payment_success(self, user_id: str, record: BillingRecord) -> None:
        logger.info(
            "billing.notification.payment_success",
            user_id=user_id,
            billing_record_id=record.id,
            amount=str(record.amount),
        )

    async def notify_payment_failure(self, user_id: str, record: BillingRecord) -> None:
        logger.info(
            "billing.notification.payment_failure",
            user_id=user_id,
            billing_record_id=record.id,
            reason=record.failure_reason,
        )


class SafeAuditSink:
    """Wraps an audit sink so a failing write never affects billing."""

    def __init__(self, sink: AuditSink) -> None:
        self.sink = sink

    async def log_payment_event(
        self,
        user_id: str,
        event_type: str,
        entity_id: str,
        outcome: str,
        detail: str | None = None,
    ) -> None:
        try:
            await self.sink.log_payment_event(user_id, event_type, entity_id, outcome, detail)
        except Exception as exc:
            logger.error(
                "billing.audit.write_failed",
                event_type=event_type,
                entity_id=entity_id,
                error=str(exc),
                exc_info=True,
            )


class SafeNotifier:
    """Wraps a notification sink so delivery failures are logged, not raised."""

    def __init__(self, sink: NotificationSink) -> None:
        self.sink = sink

    async def notify_payment_success(self, user_id: str, record: BillingRecord) -> None:
        try:
            await self.sink.notify_payment_success(user_id, record)
        except Exception as exc:
            logger.warning(
                "billing.notification.failed",
                kind="payment_success",
                user_id=user_id,
                billing_record_id=record.id,
                error=str(exc),
            )

    async def notify_payment_failure(self, user_id: str, record: BillingRecord) -> None:
        try:
            await self.sink.notify_payment_failure(user_id, record)
        except Exception as exc:
            logger.warning(
                "billing.notification.failed",
                kind="payment_failure",
                user_id=user_id,
                billing_record_id=record.id,
                error=str(exc),
            )
