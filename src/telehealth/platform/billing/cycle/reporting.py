"""
Billing cycle reporting.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from telehealth.platform.billing.config import BillingCycleConfig
from telehealth.platform.billing.core.models import utcnow
from telehealth.platform.billing.cycle.protocols import PaymentAnalytics, SubscriptionStore
from telehealth.platform.billing.cycle.results import BillingCycleReport
from telehealth.platform.billing.exceptions import BillingCycleError

logger = structlog.get_logger(__name__)


class BillingCycleReporter:
    """Builds billing cycle statistics. Reads only."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        analytics: PaymentAnalytics,
        config: BillingCycleConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.subscriptions = subscriptions
        self.analytics = analytics
        self.config = config
        self.clock = clock

    async def get_billing_cycle_report(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> BillingCycleReport:
        """
        Report billing outcomes between ``start`` and ``end``.

        Args:
            start: Start of the window, defaults to ``end`` minus the report window
            end: End of the window, defaults to now

        Raises:
            BillingCycleError: If ``start`` is after ``end``
        """
        end = end or self.clock()
        start = start or end - self.config.report_window
        if start > end:
            raise BillingCycleError(
                f"Report start {start.isoformat()} is after end {end.isoformat()}",
                context={"start": start.isoformat(), "end": end.isoformat()},
            )

        analytics = await self.analytics.get_payment_analytics(start, end)
        total_processed = await self.subscriptions.count_created_between(start, end)
        suspended_count = await self.subscriptions.count_suspended()
        retry_count = await self.subscriptions.count_with_failed_payments()

        report = BillingCycleReport(
            start_date=start,
            end_date=end,
            total_processed=total_processed,
            success_count=analytics.successful_transactions,
            failure_count=analytics.failed_transactions,
            total_revenue=analytics.successful_amount,
            suspended_count=suspended_count,
            retry_count=retry_count,
        )
        logger.info(
            "billing.report.generated",
            start=start.isoformat(),
            end=end.isoformat(),
            total_processed=report.total_processed,
            success_count=report.success_count,
            failure_count=report.failure_count,
        )
        return report
