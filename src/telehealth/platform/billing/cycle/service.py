"""
Automated billing cycle service.

Runs one full billing cycle (due subscriptions, suspended retries, usage
resets), exposes the manual trigger and builds billing cycle reports.
"""

from collections.abc import Callable
from contextlib import nullcontext
from datetime import datetime

import structlog

from telehealth.platform.billing.core.models import utcnow
from telehealth.platform.billing.cycle.processor import SubscriptionBillingProcessor
from telehealth.platform.billing.cycle.reporting import BillingCycleReporter
from telehealth.platform.billing.cycle.results import (
    BatchResult,
    BillingCycleReport,
    BillingCycleResult,
    ManualTriggerResult,
)
from telehealth.platform.billing.cycle.suspended import SuspendedSubscriptionRetryProcessor
from telehealth.platform.billing.cycle.usage import UsageCounterResetter
from telehealth.platform.billing.exceptions import BillingCycleError
from telehealth.platform.billing.metrics import BillingCycleMetrics
from telehealth.platform.logging import billing_cycle_context

logger = structlog.get_logger(__name__)


class BillingCycleService:
    """Coordinates the steps of a billing cycle."""

    def __init__(
        self,
        due_processor: SubscriptionBillingProcessor,
        suspended_processor: SuspendedSubscriptionRetryProcessor,
        usage_resetter: UsageCounterResetter,
        reporter: BillingCycleReporter,
        metrics: BillingCycleMetrics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.due_processor = due_processor
        self.suspended_processor = suspended_processor
        self.usage_resetter = usage_resetter
        self.reporter = reporter
        self.metrics = metrics
        self.clock = clock

    async def process_due_subscriptions(self, wait_for_retries: bool = True) -> BatchResult:
        return await self.due_processor.process_due_subscriptions(wait_for_retries)

    async def process_suspended_retries(self, wait_for_retries: bool = True) -> BatchResult:
        return await self.suspended_processor.process_suspended_retries(wait_for_retries)

    async def reset_usage_counters(self) -> BatchResult:
        return await self.usage_resetter.reset_usage_counters()

    async def run_cycle(
        self, trigger: str = "scheduled", wait_for_retries: bool = True
    ) -> BillingCycleResult:
        """
        Run one billing cycle.

        Per-subscription failures are reported in the result. A failure to
        load a batch aborts the cycle with ``BillingCycleError``.

        Subscriptions waiting out a payment retry delay do not hold up the
        other steps. With ``wait_for_retries`` the cycle then waits for them
        and reports their final outcome; without it they are reported as
        ``RETRY_SCHEDULED`` and finish in the background.
        """
        started_at = self.clock()
        span = self.metrics.trace_cycle(trigger) if self.metrics is not None else nullcontext()
        with billing_cycle_context(trigger) as cycle_id, span:
            logger.info("billing.cycle.started")
            if self.metrics is not None:
                self.metrics.record_cycle_started(trigger)

            try:
                due = await self.process_due_subscriptions(wait_for_retries=False)
                suspended = await self.process_suspended_retries(wait_for_retries=False)
                usage = await self.reset_usage_counters()
                if wait_for_retries:
                    due = await self.due_processor.settle_retries(due)
                    suspended = await self.suspended_processor.settle_retries(suspended)
            except Exception as exc:
                logger.error("billing.cycle.failed", error=str(exc), exc_info=True)
                if self.metrics is not None:
                    self.metrics.record_cycle_failed(trigger, type(exc).__name__)
                if isinstance(exc, BillingCycleError):
                    raise
                raise BillingCycleError(
                    f"Billing cycle failed: {exc}",
                    context={"trigger": trigger, "cycle_id": cycle_id},
                ) from exc

            result = BillingCycleResult(
                cycle_id=cycle_id,
                trigger=trigger,
                started_at=started_at,
                finished_at=self.clock(),
                due=due,
                suspended=suspended,
                usage=usage,
            )
            if self.metrics is not None:
                self.metrics.record_cycle_completed(trigger, result.duration_seconds)
            logger.info("billing.cycle.completed", **result.summary())
        return result

    async def trigger_manual_billing_cycle(self) -> ManualTriggerResult:
        """Run a billing cycle now. Never raises."""
        try:
            cycle = await self.run_cycle(trigger="manual")
        except Exception as exc:
            return ManualTriggerResult(success=False, message=f"Manual billing cycle failed: {exc}")

        return ManualTriggerResult(
            success=True,
            message=(
                "Manual billing cycle completed: "
                f"{cycle.due.succeeded} billed, {cycle.due.failed} failed, "
                f"{cycle.suspended.succeeded} reactivated, {cycle.usage.succeeded} usage resets"
            ),
            cycle=cycle,
        )

    async def get_billing_cycle_report(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> BillingCycleReport:
        return await self.reporter.get_billing_cycle_report(start, end)

    @property
    def pending_retry_count(self) -> int:
        return self.due_processor.pending_retry_count + self.suspended_processor.pending_retry_count

    async def cancel_pending_retries(self) -> int:
        """Cancel retries still running in the background; their records stay PENDING."""
        return (
            await self.due_processor.cancel_pending_retries()
            + await self.suspended_processor.cancel_pending_retries()
        )
