"""
Typed results of the billing cycle.

Every step returns one of these instead of raising, so a cycle can collect
partial failures and still report what happened.
"""

import asyncio
from collections import Counter
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field


class ChargeSucceeded(BaseModel):
    """The gateway captured the payment."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["succeeded"] = "succeeded"
    payment_reference: str
    attempts: int = 1

    @property
    def success(self) -> bool:
        return True


class ChargeFailed(BaseModel):
    """The gateway declined, errored, or every attempt was used up."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    error_message: str
    attempts: int = 1

    @property
    def success(self) -> bool:
        return False


ChargeOutcome = Annotated[ChargeSucceeded | ChargeFailed, Field(discriminator="kind")]


class SubscriptionOutcome(str, Enum):
    """What happened to one subscription during a batch."""

    BILLED = "billed"
    SUSPENDED = "suspended"
    REACTIVATED = "reactivated"
    RETRY_FAILED = "retry_failed"
    USAGE_RESET = "usage_reset"
    SKIPPED_COOLDOWN = "skipped_cooldown"
    SKIPPED_IN_PROGRESS = "skipped_in_progress"
    SKIPPED_NOT_ELIGIBLE = "skipped_not_eligible"
    RETRY_SCHEDULED = "retry_scheduled"
    ERROR = "error"


_SUCCESS_OUTCOMES = frozenset(
    {SubscriptionOutcome.BILLED, SubscriptionOutcome.REACTIVATED, SubscriptionOutcome.USAGE_RESET}
)
_FAILURE_OUTCOMES = frozenset(
    {SubscriptionOutcome.SUSPENDED, SubscriptionOutcome.RETRY_FAILED, SubscriptionOutcome.ERROR}
)


class SubscriptionResult(BaseModel):
    """Outcome of processing a single subscription."""

    subscription_id: str
    outcome: SubscriptionOutcome
    billing_record_id: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in _SUCCESS_OUTCOMES

    @property
    def failed(self) -> bool:
        return self.outcome in _FAILURE_OUTCOMES


class BatchResult(BaseModel):
    """Aggregated outcome of one batch (due, suspended retries, usage resets)."""

    name: str
    started_at: datetime
    finished_at: datetime | None = None
    results: list[SubscriptionResult] = Field(default_factory=list)

    # subscription id -> task still waiting out a retry delay
    _retry_tasks: dict[str, asyncio.Task[SubscriptionResult]] = PrivateAttr(
        default_factory=dict
    )

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return self.total - self.succeeded - self.failed

    @property
    def errors(self) -> list[str]:
        return [
            f"Subscription {r.subscription_id}: {r.error}"
            for r in self.results
            if r.outcome == SubscriptionOutcome.ERROR
        ]

    @property
    def retries_pending(self) -> int:
        return self.count(SubscriptionOutcome.RETRY_SCHEDULED)

    def count(self, outcome: SubscriptionOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def track_retry(self, subscription_id: str, task: asyncio.Task[SubscriptionResult]) -> None:
        self._retry_tasks[subscription_id] = task

    def retry_tasks(self) -> dict[str, asyncio.Task[SubscriptionResult]]:
        return dict(self._retry_tasks)

    def with_settled(
        self, settled: dict[str, SubscriptionResult], finished_at: datetime
    ) -> "BatchResult":
        """Copy of this batch with deferred retries replaced by their final results."""
        return BatchResult(
            name=self.name,
            started_at=self.started_at,
            finished_at=finished_at,
            results=[settled.get(r.subscription_id, r) for r in self.results],
        )

    def outcome_counts(self) -> dict[str, int]:
        return dict(Counter(r.outcome.value for r in self.results))

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": self.outcome_counts(),
            "errors": self.errors,
        }


class BillingCycleResult(BaseModel):
    """Outcome of one full billing cycle."""

    cycle_id: str | None = None
    trigger: str = "scheduled"
    started_at: datetime
    finished_at: datetime
    due: BatchResult
    suspended: BatchResult
    usage: BatchResult

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def batches(self) -> list[BatchResult]:
        return [self.due, self.suspended, self.usage]

    @property
    def has_errors(self) -> bool:
        return any(batch.errors for batch in self.batches)

    def summary(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            **{batch.name: batch.summary() for batch in self.batches},
        }


class ManualTriggerResult(BaseModel):
    """Envelope returned by the manual billing trigger."""

    success: bool
    message: str
    cycle: BillingCycleResult | None = None


class BillingCycleReport(BaseModel):
    """Billing cycle statistics over a date range."""

    start_date: datetime
    end_date: datetime
    total_processed: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_revenue: Decimal = Decimal("0")
    suspended_count: int = 0
    retry_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> Decimal:
        if self.total_processed <= 0:
            return Decimal("0")
        return Decimal(self.success_count) / Decimal(self.total_processed) * 100

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failure_rate(self) -> Decimal:
        if self.total_processed <= 0:
            return Decimal("0")
        return Decimal(self.failure_count) / Decimal(self.total_processed) * 100
