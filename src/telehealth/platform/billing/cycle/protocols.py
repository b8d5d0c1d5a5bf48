"""
Collaborator interfaces consumed by the billing cycle.

The cycle never talks to a database, a gateway SDK or a mailer directly; it
only depends on these protocols.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from telehealth.platform.billing.core.models import (
    BillingRecord,
    PaymentAnalyticsSummary,
    Subscription,
)
from telehealth.platform.billing.cycle.results import ChargeFailed, ChargeSucceeded


class PaymentGateway(Protocol):
    """Charges the amount of a billing record."""

    async def charge(self, billing_record_id: str) -> ChargeSucceeded | ChargeFailed: ...


class BillingRecordStore(Protocol):
    async def create(
        self,
        user_id: str,
        subscription_id: str | None,
        amount: Decimal,
        description: str,
        due_date: datetime,
    ) -> BillingRecord: ...

    async def get(self, billing_record_id: str) -> BillingRecord | None: ...

    async def update(self, record: BillingRecord) -> BillingRecord: ...


class BillingLeaseStore(Protocol):
    """Claims subscriptions for billing across processes.

    A claim succeeds when the subscription is unclaimed, its lease has
    expired, or ``owner`` already holds it.
    """

    async def claim_billing_lease(
        self, subscription_id: str, owner: str, now: datetime, expires_at: datetime
    ) -> bool: ...

    async def release_billing_lease(self, subscription_id: str, owner: str) -> None: ...


class SubscriptionStore(BillingLeaseStore, Protocol):
    async def get(self, subscription_id: str) -> Subscription | None: ...

    async def get_due_for_billing(self, as_of: datetime) -> list[Subscription]: ...

    async def get_suspended(self) -> list[Subscription]: ...

    async def get_due_for_usage_reset(self, as_of: datetime) -> list[Subscription]: ...

    async def update(self, subscription: Subscription) -> Subscription: ...

    async def reset_usage_counters(self, subscription_id: str, as_of: datetime) -> int: ...

    async def count_created_between(self, start: datetime, end: datetime) -> int: ...

    async def count_suspended(self) -> int: ...

    async def count_with_failed_payments(self) -> int: ...


class PaymentAnalytics(Protocol):
    async def get_payment_analytics(
        self, start: datetime, end: datetime
    ) -> PaymentAnalyticsSummary: ...


class AuditSink(Protocol):
    """Records immutable billing events."""

    async def log_payment_event(
        self,
        user_id: str,
        event_type: str,
        entity_id: str,
        outcome: str,
        detail: str | None = None,
    ) -> None: ...


class NotificationSink(Protocol):
    """Tells users about payment outcomes."""

    async def notify_payment_success(self, user_id: str, record: BillingRecord) -> None: ...

    async def notify_payment_failure(self, user_id: str, record: BillingRecord) -> None: ...


__all__ = [
    "PaymentGateway",
    "BillingRecordStore",
    "SubscriptionStore",
    "BillingLeaseStore",
    "PaymentAnalytics",
    "AuditSink",
    "NotificationSink",
]
