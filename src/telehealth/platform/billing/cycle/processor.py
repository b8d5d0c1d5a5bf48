"""
Billing of due subscriptions.
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


class SubscriptionBillingProcessor(ChargingBatchProcessor):
    """Charges every ACTIVE subscription whose next billing date has passed.

    A successful charge advances the subscription by one billing period. An
    exhausted retry run suspends it immediately.
    """

    batch_name = "due"

    async def process_due_subscriptions(self, wait_for_retries: bool = True) -> BatchResult:
        now = self.clock()
        due = await self.subscriptions.get_due_for_billing(now)
        logger.info("billing.due.started", count=len(due))
        return await self._run_batch(
            due, now, self.process_subscription, wait_for_retries=wait_for_retries
        )

    async def process_subscription(
        self, subscription: Subscription, as_of: datetime
    ) -> SubscriptionResult:
        current = await self._reload(subscription)
        if current is None or not current.is_due(as_of):
            # Billed or changed by a concurrent run since the batch was fetched
            return self._skipped(subscription, SubscriptionOutcome.SKIPPED_NOT_ELIGIBLE)

        record = await self._create_record(
            current,
            description=f"Subscription billing for {current.plan_name}".rstrip(),
            due_date=as_of,
        )
        outcome, settled_at = await self._charge(record)

        if isinstance(outcome, ChargeSucceeded):
            current.record_successful_charge(settled_at, months=self.config.billing_period_months)
            await self.subscriptions.update(current)
            await self.notifier.notify_payment_success(current.user_id, record)
            await self.audit.log_payment_event(
                current.user_id,
                PaymentEventType.PAYMENT_SUCCESS.value,
                record.id,
                AuditOutcome.SUCCESS.value,
            )
            self._record_payment(True, current, retry=False)
            logger.info(
                "billing.subscription.billed",
                subscription_id=current.id,
                billing_record_id=record.id,
                attempts=outcome.attempts,
                next_billing_date=current.next_billing_date.isoformat(),
            )
            return SubscriptionResult(
                subscription_id=current.id,
                outcome=SubscriptionOutcome.BILLED,
                billing_record_id=record.id,
            )

        current.suspend(settled_at, outcome.error_message)
        await self.subscriptions.update(current)
        if self.config.send_payment_failure_notifications:
            await self.notifier.notify_payment_failure(current.user_id, record)
        await self.audit.log_payment_event(
            current.user_id,
            PaymentEventType.PAYMENT_FAILED.value,
            record.id,
            AuditOutcome.FAILED.value,
            outcome.error_message,
        )
        self._record_payment(False, current, retry=False)
        if self.metrics is not None:
            self.metrics.record_suspension()
        logger.warning(
            "billing.subscription.suspended",
            subscription_id=current.id,
            billing_record_id=record.id,
            error=outcome.error_message,
        )
        return SubscriptionResult(
            subscription_id=current.id,
            outcome=SubscriptionOutcome.SUSPENDED,
            billing_record_id=record.id,
            error=outcome.error_message,
        )
