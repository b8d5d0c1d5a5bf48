"""In-memory collaborators for billing cycle tests."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.billing.core.models import (
    BillingRecord,
    PaymentAnalyticsSummary,
    Subscription,
)
from telehealth.platform.billing.cycle.results import ChargeFailed, ChargeSucceeded

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class BlockingSleep:
    """Replacement for asyncio.sleep that waits until released."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self.release = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self.release.wait()


class InMemorySubscriptionStore:
    def __init__(self) -> None:
        self.rows: dict[str, Subscription] = {}
        self.leases: dict[str, tuple[str, datetime]] = {}
        self.usage_counters: dict[str, list[dict]] = {}
        self.update_calls = 0
        self.reset_calls: list[str] = []
        self.fail_fetch: Exception | None = None
        self.fail_update: Exception | None = None
        self.fail_reset: Exception | None = None

    def add(self, subscription: Subscription) -> Subscription:
        self.rows[subscription.id] = subscription.model_copy(deep=True)
        return subscription

    def snapshot(self, subscription_id: str) -> Subscription:
        return self.rows[subscription_id].model_copy(deep=True)

    async def get(self, subscription_id: str) -> Subscription | None:
        row = self.rows.get(subscription_id)
        return row.model_copy(deep=True) if row else None

    async def get_due_for_billing(self, as_of: datetime) -> list[Subscription]:
        if self.fail_fetch:
            raise self.fail_fetch
        return [s.model_copy(deep=True) for s in self.rows.values() if s.is_due(as_of)]

    async def get_suspended(self) -> list[Subscription]:
        return [s.model_copy(deep=True) for s in self.rows.values() if s.is_suspended]

    async def get_due_for_usage_reset(self, as_of: datetime) -> list[Subscription]:
        return [
            s.model_copy(deep=True)
            for s in self.rows.values()
            if s.needs_usage_reset() and s.last_billing_date <= as_of
        ]

    async def update(self, subscription: Subscription) -> Subscription:
        if self.fail_update:
            raise self.fail_update
        self.update_calls += 1
        self.rows[subscription.id] = subscription.model_copy(deep=True)
        return subscription

    async def reset_usage_counters(self, subscription_id: str, as_of: datetime) -> int:
        if self.fail_reset:
            raise self.fail_reset
        self.reset_calls.append(subscription_id)
        counters = self.usage_counters.get(subscription_id, [])
        for counter in counters:
            counter["used_value"] = 0
            counter["reset_at"] = as_of
        self.rows[subscription_id].usage_reset_at = as_of
        return len(counters)

    async def count_created_between(self, start: datetime, end: datetime) -> int:
        return sum(1 for s in self.rows.values() if start <= s.created_at <= end)

    async def count_suspended(self) -> int:
        return sum(1 for s in self.rows.values() if s.is_suspended)

    async def count_with_failed_payments(self) -> int:
        return sum(1 for s in self.rows.values() if s.failed_payment_attempts > 0)

    async def claim_billing_lease(self, subscription_id, owner, now, expires_at) -> bool:
        held = self.leases.get(subscription_id)
        if held is not None and held[0] != owner and held[1] > now:
            return False
        self.leases[subscription_id] = (owner, expires_at)
        return True

    async def release_billing_lease(self, subscription_id, owner) -> None:
        held = self.leases.get(subscription_id)
        if held is not None and held[0] == owner:
            del self.leases[subscription_id]


class InMemoryBillingRecordStore:
    def __init__(self, clock: FakeClock) -> None:
        self.rows: dict[str, BillingRecord] = {}
        self.clock = clock
        self.create_calls = 0
        self.update_calls = 0
        self.fail_create: Exception | None = None

    async def create(self, user_id, subscription_id, amount, description, due_date) -> BillingRecord:
        if self.fail_create:
            raise self.fail_create
        self.create_calls += 1
        record = BillingRecord(
            id=str(uuid4()),
            user_id=user_id,
            subscription_id=subscription_id,
            amount=amount,
            description=description,
            due_date=due_date,
            created_at=self.clock(),
        )
        self.rows[record.id] = record.model_copy(deep=True)
        return record

    async def get(self, billing_record_id: str) -> BillingRecord | None:
        row = self.rows.get(billing_record_id)
        return row.model_copy(deep=True) if row else None

    async def update(self, record: BillingRecord) -> BillingRecord:
        self.update_calls += 1
        self.rows[record.id] = record.model_copy(deep=True)
        return record

    def for_subscription(self, subscription_id: str) -> list[BillingRecord]:
        return [r for r in self.rows.values() if r.subscription_id == subscription_id]


class InMemoryPaymentAnalytics:
    def __init__(self, records: InMemoryBillingRecordStore) -> None:
        self.records = records

    async def get_payment_analytics(self, start: datetime, end: datetime) -> PaymentAnalyticsSummary:
        in_range = [r for r in self.records.rows.values() if start <= r.created_at <= end]
        paid = [r for r in in_range if r.status == BillingRecordStatus.PAID]
        failed = [r for r in in_range if r.status == BillingRecordStatus.FAILED]
        return PaymentAnalyticsSummary(
            successful_transactions=len(paid),
            failed_transactions=len(failed),
            total_transactions=len(in_range),
            successful_amount=sum((r.amount for r in paid), Decimal("0")),
            failed_amount=sum((r.amount for r in failed), Decimal("0")),
        )


class RecordingAuditSink:
    def __init__(self) -> None:
        self.events: list[dict] = []

    async def log_payment_event(self, user_id, event_type, entity_id, outcome, detail=None):
        self.events.append(
            {
                "user_id": user_id,
                "event_type": event_type,
                "entity_id": entity_id,
                "outcome": outcome,
                "detail": detail,
            }
        )

    def types(self) -> list[str]:
        return [event["event_type"] for event in self.events]

    def for_user(self, user_id: str) -> list[dict]:
        return [event for event in self.events if event["user_id"] == user_id]


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.successes: list[tuple[str, str]] = []
        self.failures: list[tuple[str, str]] = []

    async def notify_payment_success(self, user_id, record):
        self.successes.append((user_id, record.id))

    async def notify_payment_failure(self, user_id, record):
        self.failures.append((user_id, record.id))


class ScriptedGateway:
    """Gateway returning (or raising) scripted outcomes in call order."""

    def __init__(self, *script, default=None) -> None:
        self.script = list(script)
        self.default = default or ChargeSucceeded(payment_reference="pay_default")
        self.calls: list[str] = []

    async def charge(self, billing_record_id: str):
        self.calls.append(billing_record_id)
        outcome = self.script.pop(0) if self.script else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class PerSubscriptionGateway:
    """Gateway that declines the records of chosen subscriptions and approves the rest."""

    def __init__(self, records: InMemoryBillingRecordStore, declining: set[str]) -> None:
        self.records = records
        self.declining = declining
        self.calls: list[str] = []

    async def charge(self, billing_record_id: str):
        self.calls.append(billing_record_id)
        subscription_id = self.records.rows[billing_record_id].subscription_id
        if subscription_id in self.declining:
            return declined()
        return approved(f"pay_{billing_record_id[:8]}")


def declined(message: str = "card_declined") -> ChargeFailed:
    return ChargeFailed(error_message=message)


def approved(reference: str = "pay_123") -> ChargeSucceeded:
    return ChargeSucceeded(payment_reference=reference)


def make_subscription(**overrides) -> Subscription:
    values = {
        "id": str(uuid4()),
        "user_id": f"user-{uuid4().hex[:8]}",
        "plan_name": "Primary Care Monthly",
        "status": SubscriptionStatus.ACTIVE,
        "current_price": Decimal("50.00"),
        "next_billing_date": NOW - timedelta(days=1),
        "created_at": NOW - timedelta(days=40),
    }
    values.update(overrides)
    return Subscription(**values)
