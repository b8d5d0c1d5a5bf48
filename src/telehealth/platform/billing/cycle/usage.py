"""
Per-subscription usage counter resets at billing cycle boundaries.
"""

from datetime import datetime

import structlog

from telehealth.platform.billing.core.enums import AuditOutcome, PaymentEventType
from telehealth.platform.billing.core.models import Subscription
from telehealth.platform.billing.cycle.batch import CycleBatchProcessor
from telehealth.platform.billing.cycle.results import (
    BatchResult,
    SubscriptionOutcome,
    SubscriptionResult,
)
from telehealth.platform.billing.exceptions import UsageTrackingError

logger = structlog.get_logger(__name__)


class UsageCounterResetter(CycleBatchProcessor):
    """Resets the usage counters of subscriptions that rolled into a new cycle."""

    batch_name = "usage"
    error_event = None

    async def reset_usage_counters(self) -> BatchResult:
        now = self.clock()
        eligible = await self.subscriptions.get_due_for_usage_reset(now)
        logger.info("billing.usage.started", count=len(eligible))
        return await self._run_batch(eligible, now, self.reset_subscription)

    async def reset_subscription(
        self, subscription: Subscription, as_of: datetime
    ) -> SubscriptionResult:
        current = await self._reload(subscription)
        if current is None or not current.needs_usage_reset():
            return self._skipped(subscription, SubscriptionOutcome.SKIPPED_NOT_ELIGIBLE)

        try:
            counters = await self.subscriptions.reset_usage_counters(current.id, as_of)
        except Exception as exc:
            raise UsageTrackingError(
                f"Usage reset failed for subscription {current.id}: {exc}",
                context={"subscription_id": current.id},
            ) from exc
        await self.audit.log_payment_event(
            current.user_id,
            PaymentEventType.USAGE_RESET.value,
            current.id,
            AuditOutcome.SUCCESS.value,
            f"Reset {counters} usage counters",
        )
        if self.metrics is not None:
            self.metrics.record_usage_reset(counters)
        return SubscriptionResult(subscription_id=current.id, outcome=SubscriptionOutcome.USAGE_RESET)
