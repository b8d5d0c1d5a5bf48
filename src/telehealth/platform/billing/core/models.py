"""
Billing transfer models.

Pydantic models handed between the stores and the billing cycle. The state
transitions of the billing cycle live here so every processor applies them
the same way.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field

from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.billing.exceptions import BillingRecordStateError, SubscriptionStateError


def utcnow() -> datetime:
    return datetime.now(UTC)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of shorter months."""
    return value + relativedelta(months=months)


class BillingTransferModel(BaseModel):
    """Base model for billing transfer objects."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


class Subscription(BillingTransferModel):
    """A user's recurring subscription as seen by the billing cycle."""

    id: str
    user_id: str
    plan_name: str = Field("", description="Plan name used in billing descriptions")
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    current_price: Decimal = Field(ge=0)
    next_billing_date: datetime
    last_billing_date: datetime | None = None

    failed_payment_attempts: int = Field(0, ge=0)
    last_payment_error: str | None = None
    last_payment_failed_date: datetime | None = None
    suspended_date: datetime | None = None
    usage_reset_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None

    @property
    def is_suspended(self) -> bool:
        return self.status == SubscriptionStatus.SUSPENDED

    def is_due(self, as_of: datetime) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and self.next_billing_date <= as_of

    def cooldown_elapsed(self, as_of: datetime, cooldown_seconds: float) -> bool:
        """Whether a suspended subscription may be retried at ``as_of``."""
        if self.suspended_date is None:
            return True
        return (as_of - self.suspended_date).total_seconds() >= cooldown_seconds

    def needs_usage_reset(self) -> bool:
        if self.status != SubscriptionStatus.ACTIVE or self.last_billing_date is None:
            return False
        return self.usage_reset_at is None or self.usage_reset_at < self.last_billing_date

    def _require_status(self, expected: SubscriptionStatus, requested: SubscriptionStatus) -> None:
        if self.status != expected:
            raise SubscriptionStateError(
                f"Subscription {self.id} is {self.status.value}, expected {expected.value}",
                current_state=self.status.value,
                requested_state=requested.value,
            )

    def record_successful_charge(self, now: datetime, months: int = 1) -> None:
        """Advance an active subscription after a paid cycle."""
        self._require_status(SubscriptionStatus.ACTIVE, SubscriptionStatus.ACTIVE)
        self.next_billing_date = add_months(self.next_billing_date, months)
        self.last_billing_date = now
        self.failed_payment_attempts = 0
        self.last_payment_error = None
        self.updated_at = now

    def suspend(self, now: datetime, error: str) -> None:
        """Suspend an active subscription whose in-cycle retries are exhausted."""
        self._require_status(SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED)
        self.status = SubscriptionStatus.SUSPENDED
        self.suspended_date = now
        self.failed_payment_attempts += 1
        self.last_payment_error = error
        self.last_payment_failed_date = now
        self.updated_at = now

    def reactivate(self, now: datetime, months: int = 1) -> None:
        """Reactivate a suspended subscription after a successful retry."""
        self._require_status(SubscriptionStatus.SUSPENDED, SubscriptionStatus.ACTIVE)
        self.status = SubscriptionStatus.ACTIVE
        self.suspended_date = None
        self.next_billing_date = add_months(self.next_billing_date, months)
        self.last_billing_date = now
        self.failed_payment_attempts = 0
        self.last_payment_error = None
        self.updated_at = now

    def record_failed_retry(self, now: datetime, error: str) -> None:
        """Keep a subscription suspended after another failed retry."""
        self._require_status(SubscriptionStatus.SUSPENDED, SubscriptionStatus.SUSPENDED)
        self.failed_payment_attempts += 1
        self.last_payment_error = error
        self.last_payment_failed_date = now
        self.updated_at = now


class BillingAdjustment(BillingTransferModel):
    """Additive amount attached to a billing record."""

    id: str
    billing_record_id: str
    amount: Decimal
    reason: str
    created_at: datetime = Field(default_factory=utcnow)


class BillingRecord(BillingTransferModel):
    """One payment attempt's durable trace."""

    id: str
    user_id: str
    subscription_id: str | None = None
    amount: Decimal = Field(ge=0)
    description: str = ""
    due_date: datetime
    status: BillingRecordStatus = BillingRecordStatus.PENDING
    paid_at: datetime | None = None
    payment_reference: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    def _settle(self, requested: BillingRecordStatus) -> None:
        if self.status.is_terminal:
            raise BillingRecordStateError(
                f"Billing record {self.id} is already {self.status.value}",
                current_state=self.status.value,
                requested_state=requested.value,
            )
        self.status = requested

    def mark_paid(self, payment_reference: str, paid_at: datetime) -> None:
        if not payment_reference:
            raise ValueError("A paid billing record needs a payment reference")
        self._settle(BillingRecordStatus.PAID)
        self.payment_reference = payment_reference
        self.paid_at = paid_at

    def mark_failed(self, reason: str) -> None:
        self._settle(BillingRecordStatus.FAILED)
        self.failure_reason = reason or "Payment failed"

    def mark_cancelled(self, reason: str | None = None) -> None:
        self._settle(BillingRecordStatus.CANCELLED)
        self.failure_reason = reason

    def total_with_adjustments(self, adjustments: Iterable[BillingAdjustment]) -> Decimal:
        return self.amount + sum(
            (adj.amount for adj in adjustments if adj.billing_record_id == self.id),
            Decimal("0"),
        )


class UsageCounter(BillingTransferModel):
    """Per-cycle usage counter of one subscription privilege."""

    id: str
    subscription_id: str
    name: str
    used_value: int = Field(0, ge=0)
    allowed_value: int = Field(-1, description="-1 means unlimited")
    usage_period_start: datetime
    usage_period_end: datetime
    reset_at: datetime | None = None

    @property
    def is_unlimited(self) -> bool:
        return self.allowed_value == -1

    @property
    def remaining_value(self) -> int | None:
        if self.is_unlimited:
            return None
        return max(0, self.allowed_value - self.used_value)

    @property
    def is_exhausted(self) -> bool:
        return not self.is_unlimited and self.used_value >= self.allowed_value


class PaymentAnalyticsSummary(BillingTransferModel):
    """Payment totals over a date range."""

    successful_transactions: int = 0
    failed_transactions: int = 0
    total_transactions: int = 0
    successful_amount: Decimal = Decimal("0")
    failed_amount: Decimal = Decimal("0")
    refunded_amount: Decimal = Decimal("0")

    @property
    def success_rate(self) -> Decimal:
        if not self.total_transactions:
            return Decimal("0")
        return Decimal(self.successful_transactions) / Decimal(self.total_transactions) * 100
