"""
Cooldown retries of suspended subscriptions.
"""

from datetime import datetime

import structlog

from telehealth.platform.billing.core.enums import AuditOutcome, PaymentEventType
from telehealth.platform.billing.core.models import Subscription
from telehealth.platform.billing.cycle.batch import ChargingBatchProcessor
from telehealth.platform.billing.cycle.results import (
    BatchResult,
    ChargeSucceeded,
    SubscriptionOutcome,
    SubscriptionResult,
)

logger = structlog.get_logger(__name__)


class SuspendedSubscriptionRetryProcessor(ChargingBatchProcessor):
    """Retries suspended subscriptions once their cooldown has elapsed.

    Each retry run creates a new billing record. A success reactivates the
    subscription; a failure keeps it suspended until the next cycle, with no
    limit on the number of cooldown retries.
    """

    batch_name = "suspended"

    async def process_suspended_retries(self, wait_for_retries: bool = True) -> BatchResult:
        now = self.clock()
        suspended = await self.subscriptions.get_suspended()
        logger.info("billing.suspended.started", count=len(suspended))
        return await self._run_batch(
            suspended, now, self.retry_subscription, wait_for_retries=wait_for_retries
        )

    async def retry_subscription(
        self, subscription: Subscription, as_of: datetime
    ) -> SubscriptionResult:
        current = await self._reload(subscription)
        if current is None or not current.is_suspended:
            return self._skipped(subscription, SubscriptionOutcome.SKIPPED_NOT_ELIGIBLE)

        if current.suspended_date is None:
            logger.warning("billing.suspended.missing_suspended_date", subscription_id=current.id)
        elif not current.cooldown_elapsed(as_of, self.config.suspended_retry_cooldown_seconds):
            return self._skipped(current, SubscriptionOutcome.SKIPPED_COOLDOWN)

        record = await self._create_record(
            current,
            description=f"Retry payment for {current.plan_name}".rstrip(),
            due_date=as_of,
        )
        outcome, settled_at = await self._charge(record)

        if isinstance(outcome, ChargeSucceeded):
            current.reactivate(settled_at, months=self.config.billing_period_months)
            await self.subscriptions.update(current)
            await self.notifier.notify_payment_success(current.user_id, record)
            await self.audit.log_payment_event(
                current.user_id,
                PaymentEventType.PAYMENT_RETRY_SUCCESS.value,
                record.id,
                AuditOutcome.SUCCESS.value,
            )
            self._record_payment(True, current, retry=True)
            if self.metrics is not None:
                self.metrics.record_reactivation()
            logger.info(
                "billing.subscription.reactivated",
                subscription_id=current.id,
                billing_record_id=record.id,
            )
            return SubscriptionResult(
                subscription_id=current.id,
                outcome=SubscriptionOutcome.REACTIVATED,
                billing_record_id=record.id,
            )

        current.record_failed_retry(settled_at, outcome.error_message)
        await self.subscriptions.update(current)
        await self.audit.log_payment_event(
            current.user_id,
            PaymentEventType.PAYMENT_RETRY_FAILED.value,
            record.id,
            AuditOutcome.FAILED.value,
            outcome.error_message,
        )
        self._record_payment(False, current, retry=True)
        logger.warning(
            "billing.subscription.retry_failed",
            subscription_id=current.id,
            billing_record_id=record.id,
            failed_attempts=current.failed_payment_attempts,
        )
        return SubscriptionResult(
            subscription_id=current.id,
            outcome=SubscriptionOutcome.RETRY_FAILED,
            billing_record_id=record.id,
            error=outcome.error_message,
        )
