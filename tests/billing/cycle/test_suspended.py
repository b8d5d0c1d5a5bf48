"""Tests for cooldown retries of suspended subscriptions."""

from datetime import timedelta

import pytest

from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.billing.core.models import add_months
from telehealth.platform.billing.cycle.results import SubscriptionOutcome
from tests.billing.cycle.fakes import NOW, ScriptedGateway, approved, declined, make_subscription

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _suspended(hours_ago: float | None, **overrides):
    values = {
        "status": SubscriptionStatus.SUSPENDED,
        "suspended_date": NOW - timedelta(hours=hours_ago) if hours_ago is not None else None,
        "failed_payment_attempts": 1,
        "last_payment_error": "card_declined",
        "next_billing_date": NOW - timedelta(days=1),
    }
    values.update(overrides)
    return make_subscription(**values)


class TestProcessSuspendedRetries:
    async def test_within_cooldown_is_left_alone(
        self, build_service, subscriptions, billing_records, audit
    ):
        sub = subscriptions.add(_suspended(hours_ago=1))
        gateway = ScriptedGateway()
        service = build_service(gateway)

        batch = await service.process_suspended_retries()

        assert batch.count(SubscriptionOutcome.SKIPPED_COOLDOWN) == 1
        assert gateway.calls == []
        assert billing_records.create_calls == 0
        assert subscriptions.snapshot(sub.id) == sub
        assert audit.events == []

    async def test_successful_retry_reactivates(
        self, build_service, subscriptions, billing_records, audit, notifier
    ):
        sub = subscriptions.add(_suspended(hours_ago=7))
        service = build_service(ScriptedGateway(approved("pay_retry")))

        batch = await service.process_suspended_retries()

        assert batch.count(SubscriptionOutcome.REACTIVATED) == 1
        stored = subscriptions.snapshot(sub.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.suspended_date is None
        assert stored.failed_payment_attempts == 0
        assert stored.last_payment_error is None
        assert stored.next_billing_date == add_months(sub.next_billing_date, 1)
        assert stored.last_billing_date == NOW

        [record] = billing_records.for_subscription(sub.id)
        assert record.status == BillingRecordStatus.PAID
        assert record.description == "Retry payment for Primary Care Monthly"
        assert audit.types() == ["PaymentRetrySuccess"]
        assert notifier.successes == [(sub.user_id, record.id)]

    async def test_failed_retry_stays_suspended(
        self, build_service, subscriptions, billing_records, audit
    ):
        sub = subscriptions.add(_suspended(hours_ago=7))
        service = build_service(ScriptedGateway(default=declined("expired_card")))

        batch = await service.process_suspended_retries()

        assert batch.count(SubscriptionOutcome.RETRY_FAILED) == 1
        stored = subscriptions.snapshot(sub.id)
        assert stored.status == SubscriptionStatus.SUSPENDED
        assert stored.suspended_date == sub.suspended_date
        assert stored.failed_payment_attempts == 2
        assert stored.last_payment_failed_date == NOW
        assert "expired_card" in stored.last_payment_error

        [record] = billing_records.for_subscription(sub.id)
        assert record.status == BillingRecordStatus.FAILED
        assert audit.types() == ["PaymentRetryFailed"]

    async def test_each_retry_run_creates_a_new_record(
        self, build_service, subscriptions, billing_records, clock
    ):
        sub = subscriptions.add(_suspended(hours_ago=7))
        service = build_service(ScriptedGateway(default=declined()))

        await service.process_suspended_retries()
        clock.advance(7 * 3600)
        await service.process_suspended_retries()

        records = billing_records.for_subscription(sub.id)
        assert len(records) == 2
        assert all(r.status == BillingRecordStatus.FAILED for r in records)
        assert subscriptions.snapshot(sub.id).failed_payment_attempts == 3

    async def test_missing_suspended_date_is_retried_immediately(
        self, build_service, subscriptions
    ):
        sub = subscriptions.add(_suspended(hours_ago=None))
        gateway = ScriptedGateway(approved())
        service = build_service(gateway)

        batch = await service.process_suspended_retries()

        assert batch.count(SubscriptionOutcome.REACTIVATED) == 1
        assert len(gateway.calls) == 1
        assert subscriptions.snapshot(sub.id).status == SubscriptionStatus.ACTIVE

    async def test_cooldown_boundary_is_inclusive(self, build_service, subscriptions):
        subscriptions.add(_suspended(hours_ago=6))
        service = build_service(ScriptedGateway(approved()))

        batch = await service.process_suspended_retries()

        assert batch.count(SubscriptionOutcome.REACTIVATED) == 1

    async def test_active_subscriptions_are_not_retried(self, service, subscriptions):
        subscriptions.add(make_subscription())

        batch = await service.process_suspended_retries()

        assert batch.total == 0
