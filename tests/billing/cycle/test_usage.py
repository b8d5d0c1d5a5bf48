"""Tests for per-subscription usage counter resets."""

from datetime import timedelta

import pytest

from telehealth.platform.billing.core.enums import SubscriptionStatus
from telehealth.platform.billing.cycle.results import SubscriptionOutcome
from tests.billing.cycle.fakes import NOW, make_subscription

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _counter(used: int) -> dict:
    return {"name": "consultations", "used_value": used, "reset_at": None}


class TestResetUsageCounters:
    async def test_resets_only_rolled_over_subscription(self, service, subscriptions, audit):
        rolled = subscriptions.add(
            make_subscription(
                last_billing_date=NOW - timedelta(hours=1),
                usage_reset_at=NOW - timedelta(days=31),
                next_billing_date=NOW + timedelta(days=30),
            )
        )
        current = subscriptions.add(
            make_subscription(
                last_billing_date=NOW - timedelta(days=2),
                usage_reset_at=NOW - timedelta(days=1),
                next_billing_date=NOW + timedelta(days=28),
            )
        )
        subscriptions.usage_counters[rolled.id] = [_counter(4), _counter(2)]
        subscriptions.usage_counters[current.id] = [_counter(7)]

        batch = await service.reset_usage_counters()

        assert batch.count(SubscriptionOutcome.USAGE_RESET) == 1
        assert subscriptions.reset_calls == [rolled.id]
        assert [c["used_value"] for c in subscriptions.usage_counters[rolled.id]] == [0, 0]
        assert subscriptions.usage_counters[current.id][0]["used_value"] == 7
        assert subscriptions.snapshot(rolled.id).usage_reset_at == NOW

        [event] = audit.events
        assert event["event_type"] == "UsageReset"
        assert event["entity_id"] == rolled.id
        assert event["detail"] == "Reset 2 usage counters"

    async def test_never_reset_subscription_is_eligible(self, service, subscriptions):
        sub = subscriptions.add(
            make_subscription(
                last_billing_date=NOW - timedelta(days=1),
                next_billing_date=NOW + timedelta(days=29),
            )
        )

        batch = await service.reset_usage_counters()

        assert [r.subscription_id for r in batch.results] == [sub.id]

    async def test_suspended_and_never_billed_are_skipped(self, service, subscriptions):
        subscriptions.add(
            make_subscription(
                status=SubscriptionStatus.SUSPENDED,
                suspended_date=NOW,
                last_billing_date=NOW - timedelta(days=3),
            )
        )
        subscriptions.add(make_subscription(next_billing_date=NOW + timedelta(days=3)))

        batch = await service.reset_usage_counters()

        assert batch.total == 0
        assert subscriptions.reset_calls == []

    async def test_store_failure_is_reported_without_billing_error(
        self, service, subscriptions, audit
    ):
        sub = subscriptions.add(
            make_subscription(
                last_billing_date=NOW - timedelta(hours=1),
                next_billing_date=NOW + timedelta(days=30),
            )
        )
        subscriptions.fail_reset = RuntimeError("lock timeout")

        batch = await service.reset_usage_counters()

        [result] = batch.results
        assert result.outcome == SubscriptionOutcome.ERROR
        assert sub.id in result.error
        assert "lock timeout" in result.error
        assert audit.events == []
