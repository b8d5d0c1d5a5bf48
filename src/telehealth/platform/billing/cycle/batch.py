"""
Shared batch machinery for the billing cycle processors.

A batch fans subscriptions out to one task each, bounded by
``batch_concurrency``. Every task runs under the subscription guard and turns
its own exceptions into an ``ERROR`` result, so one subscription can never
abort the batch.

A task whose charge enters a retry delay gives up its batch slot and leaves
the batch as ``RETRY_SCHEDULED``. It keeps running in the background, still
holding the guard, until its retries settle. ``settle_retries`` waits for
those tasks and ``cancel_pending_retries`` stops them.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from contextvars import ContextVar
from datetime import datetime

import structlog

from telehealth.platform.billing.config import BillingCycleConfig
from telehealth.platform.billing.core.enums import AuditOutcome, PaymentEventType
from telehealth.platform.billing.core.models import BillingRecord, Subscription, utcnow
from telehealth.platform.billing.cycle.guard import SubscriptionBillingGuard
from telehealth.platform.billing.cycle.protocols import (
    AuditSink,
    BillingRecordStore,
    NotificationSink,
    SubscriptionStore,
)
from telehealth.platform.billing.cycle.results import (
    BatchResult,
    ChargeFailed,
    ChargeSucceeded,
    SubscriptionOutcome,
    SubscriptionResult,
)
from telehealth.platform.billing.cycle.retry import RetryCoordinator
from telehealth.platform.billing.cycle.sinks import SafeAuditSink, SafeNotifier
from telehealth.platform.billing.metrics import BillingCycleMetrics

logger = structlog.get_logger(__name__)

ClockFunc = Callable[[], datetime]
Handler = Callable[[Subscription, datetime], Awaitable[SubscriptionResult]]


class RecordCreationError(Exception):
    """The billing record for a charge could not be created."""


class RetryHandoff:
    """Batch slot of one subscription task, handed back when a retry delay starts."""

    def __init__(self, slots: asyncio.Semaphore) -> None:
        self._slots = slots
        self._holding = False
        self.deferred = asyncio.Event()
        self.billing_record_id: str | None = None

    async def acquire(self) -> None:
        await self._slots.acquire()
        self._holding = True

    def release(self) -> None:
        if self._holding:
            self._holding = False
            self._slots.release()

    def defer(self, billing_record_id: str) -> None:
        self.billing_record_id = billing_record_id
        self.release()
        self.deferred.set()


_current_handoff: ContextVar[RetryHandoff | None] = ContextVar(
    "billing_retry_handoff", default=None
)


class CycleBatchProcessor:
    """Base class for the subscription batches of a billing cycle."""

    batch_name = "batch"
    error_event: PaymentEventType | None = PaymentEventType.BILLING_ERROR

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        audit: AuditSink,
        guard: SubscriptionBillingGuard,
        config: BillingCycleConfig,
        metrics: BillingCycleMetrics | None = None,
        clock: ClockFunc = utcnow,
    ) -> None:
        self.subscriptions = subscriptions
        self.audit = audit if isinstance(audit, SafeAuditSink) else SafeAuditSink(audit)
        self.guard = guard
        self.config = config
        self.metrics = metrics
        self.clock = clock
        self._retry_tasks: set[asyncio.Task[SubscriptionResult]] = set()

    @property
    def pending_retry_count(self) -> int:
        return len(self._retry_tasks)

    async def _run_batch(
        self,
        candidates: Sequence[Subscription],
        started_at: datetime,
        handler: Handler,
        wait_for_retries: bool = True,
    ) -> BatchResult:
        slots = asyncio.Semaphore(self.config.batch_concurrency)
        entries = []
        for subscription in candidates:
            handoff = RetryHandoff(slots)
            task = asyncio.create_task(self._work(subscription, started_at, handler, handoff))
            entries.append((subscription, handoff, task))

        try:
            results = await asyncio.gather(
                *(self._settled_or_deferred(sub, handoff, task) for sub, handoff, task in entries)
            )
        except asyncio.CancelledError:
            for _, _, task in entries:
                task.cancel()
            raise

        batch = BatchResult(
            name=self.batch_name,
            started_at=started_at,
            finished_at=self.clock(),
            results=list(results),
        )
        for (subscription, _, task), result in zip(entries, results, strict=True):
            if result.outcome == SubscriptionOutcome.RETRY_SCHEDULED:
                batch.track_retry(subscription.id, task)
                self._retry_tasks.add(task)
                task.add_done_callback(self._retry_tasks.discard)

        logger.info(
            f"billing.{self.batch_name}.completed",
            total=batch.total,
            succeeded=batch.succeeded,
            failed=batch.failed,
            skipped=batch.skipped,
            retries_pending=batch.retries_pending,
        )
        if wait_for_retries:
            batch = await self.settle_retries(batch)
        return batch

    async def settle_retries(self, batch: BatchResult) -> BatchResult:
        """Wait for the deferred retries of ``batch`` and fold in their results."""
        tasks = batch.retry_tasks()
        if not tasks:
            return batch

        settled = await asyncio.gather(*tasks.values())
        batch = batch.with_settled(dict(zip(tasks, settled, strict=True)), self.clock())
        logger.info(
            f"billing.{self.batch_name}.retries_settled",
            settled=len(settled),
            succeeded=batch.succeeded,
            failed=batch.failed,
        )
        return batch

    async def cancel_pending_retries(self) -> int:
        """Cancel every retry still waiting in the background; return how many."""
        tasks = list(self._retry_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(f"billing.{self.batch_name}.retries_cancelled", count=len(tasks))
        return len(tasks)

    async def _work(
        self,
        subscription: Subscription,
        started_at: datetime,
        handler: Handler,
        handoff: RetryHandoff,
    ) -> SubscriptionResult:
        await handoff.acquire()
        _current_handoff.set(handoff)
        try:
            return await self._guarded(subscription, started_at, handler)
        finally:
            handoff.release()

    async def _settled_or_deferred(
        self,
        subscription: Subscription,
        handoff: RetryHandoff,
        task: asyncio.Task[SubscriptionResult],
    ) -> SubscriptionResult:
        deferred = asyncio.create_task(handoff.deferred.wait())
        try:
            await asyncio.wait({task, deferred}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            deferred.cancel()

        if task.done():
            return task.result()
        logger.info(
            "billing.subscription.retry_scheduled",
            subscription_id=subscription.id,
            billing_record_id=handoff.billing_record_id,
            batch=self.batch_name,
        )
        return SubscriptionResult(
            subscription_id=subscription.id,
            outcome=SubscriptionOutcome.RETRY_SCHEDULED,
            billing_record_id=handoff.billing_record_id,
        )

    async def _guarded(
        self, subscription: Subscription, as_of: datetime, handler: Handler
    ) -> SubscriptionResult:
        try:
            async with self.guard.hold(subscription.id) as acquired:
                if not acquired:
                    logger.info(
                        "billing.subscription.in_progress",
                        subscription_id=subscription.id,
                        batch=self.batch_name,
                    )
                    return SubscriptionResult(
                        subscription_id=subscription.id,
                        outcome=SubscriptionOutcome.SKIPPED_IN_PROGRESS,
                    )
                return await handler(subscription, as_of)
        except Exception as exc:
            return await self._handle_error(subscription, exc)

    async def _handle_error(self, subscription: Subscription, exc: Exception) -> SubscriptionResult:
        logger.error(
            "billing.subscription.error",
            subscription_id=subscription.id,
            batch=self.batch_name,
            error=str(exc),
            exc_info=True,
        )
        if self.error_event is not None:
            await self.audit.log_payment_event(
                subscription.user_id,
                self.error_event.value,
                subscription.id,
                AuditOutcome.ERROR.value,
                str(exc),
            )
        return SubscriptionResult(
            subscription_id=subscription.id,
            outcome=SubscriptionOutcome.ERROR,
            error=str(exc) or type(exc).__name__,
        )

    async def _reload(self, subscription: Subscription) -> Subscription | None:
        """Re-read the subscription now that the guard is held."""
        return await self.subscriptions.get(subscription.id)

    def _skipped(self, subscription: Subscription, outcome: SubscriptionOutcome) -> SubscriptionResult:
        return SubscriptionResult(subscription_id=subscription.id, outcome=outcome)


class ChargingBatchProcessor(CycleBatchProcessor):
    """Batch processor that charges subscriptions through the retry coordinator."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        billing_records: BillingRecordStore,
        retry: RetryCoordinator,
        audit: AuditSink,
        notifier: NotificationSink,
        guard: SubscriptionBillingGuard,
        config: BillingCycleConfig,
        metrics: BillingCycleMetrics | None = None,
        clock: ClockFunc = utcnow,
    ) -> None:
        super().__init__(subscriptions, audit, guard, config, metrics=metrics, clock=clock)
        self.billing_records = billing_records
        self.retry = retry
        self.notifier = notifier if isinstance(notifier, SafeNotifier) else SafeNotifier(notifier)

    async def _create_record(
        self, subscription: Subscription, description: str, due_date: datetime
    ) -> BillingRecord:
        try:
            return await self.billing_records.create(
                user_id=subscription.user_id,
                subscription_id=subscription.id,
                amount=subscription.current_price,
                description=description,
                due_date=due_date,
            )
        except Exception as exc:
            logger.error(
                "billing.record.create_failed",
                subscription_id=subscription.id,
                error=str(exc),
            )
            raise RecordCreationError(f"Failed to create billing record: {exc}") from exc

    async def _charge(
        self, record: BillingRecord
    ) -> tuple[ChargeSucceeded | ChargeFailed, datetime]:
        """Charge ``record`` and write its terminal status."""
        handoff = _current_handoff.get()
        outcome = await self.retry.execute(
            record.id, on_backoff=handoff.defer if handoff is not None else None
        )
        settled_at = self.clock()
        if isinstance(outcome, ChargeSucceeded):
            record.mark_paid(outcome.payment_reference, settled_at)
        else:
            record.mark_failed(outcome.error_message)
        await self.billing_records.update(record)
        return outcome, settled_at

    async def _handle_error(self, subscription: Subscription, exc: Exception) -> SubscriptionResult:
        if isinstance(exc, RecordCreationError):
            # Data failure: skip without auditing a billing error
            return SubscriptionResult(
                subscription_id=subscription.id,
                outcome=SubscriptionOutcome.ERROR,
                error=str(exc),
            )
        return await super()._handle_error(subscription, exc)

    def _record_payment(self, success: bool, subscription: Subscription, retry: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_payment(success, subscription.current_price, retry=retry)
