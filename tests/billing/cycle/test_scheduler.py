"""Tests for the periodic billing cycle loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from telehealth.platform.billing.config import BillingCycleConfig
from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.billing.cycle.results import SubscriptionOutcome
from telehealth.platform.billing.cycle.scheduler import BillingCycleScheduler
from tests.billing.cycle.fakes import ScriptedGateway, declined, make_subscription

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def mock_service():
    service = AsyncMock()
    service.run_cycle.return_value = MagicMock(name="BillingCycleResult")
    return service


class TestBillingCycleScheduler:
    async def test_tick_runs_one_scheduled_cycle(self, mock_service):
        scheduler = BillingCycleScheduler(mock_service)

        result = await scheduler.tick()

        assert result is mock_service.run_cycle.return_value
        mock_service.run_cycle.assert_awaited_once_with(trigger="scheduled", wait_for_retries=False)

    async def test_from_config(self, mock_service):
        config = BillingCycleConfig(cycle_interval_seconds=60, error_cooldown_seconds=5)

        scheduler = BillingCycleScheduler.from_config(mock_service, config)

        assert scheduler.interval_seconds == 60
        assert scheduler.error_cooldown_seconds == 5

    async def test_loop_waits_interval_between_cycles(self, mock_service):
        scheduler = BillingCycleScheduler(mock_service, interval_seconds=3600)

        scheduler.start()
        await _wait_until(lambda: mock_service.run_cycle.await_count == 1)
        assert scheduler.running

        await scheduler.stop()

        assert not scheduler.running
        assert mock_service.run_cycle.await_count == 1
        mock_service.cancel_pending_retries.assert_awaited_once()

    async def test_failed_cycle_is_followed_by_error_cooldown(self, mock_service):
        mock_service.run_cycle.side_effect = [
            RuntimeError("database unavailable"),
            MagicMock(name="BillingCycleResult"),
        ]
        scheduler = BillingCycleScheduler(
            mock_service, interval_seconds=3600, error_cooldown_seconds=0.01
        )

        scheduler.start()
        await _wait_until(lambda: mock_service.run_cycle.await_count == 2)
        await scheduler.stop()

        assert mock_service.run_cycle.await_count == 2

    async def test_start_is_idempotent_while_running(self, mock_service):
        scheduler = BillingCycleScheduler(mock_service, interval_seconds=3600)

        first = scheduler.start()
        second = scheduler.start()
        await scheduler.stop()

        assert first is second

    async def test_scheduler_can_restart_after_stop(self, mock_service):
        scheduler = BillingCycleScheduler(mock_service, interval_seconds=3600)

        scheduler.start()
        await _wait_until(lambda: mock_service.run_cycle.await_count == 1)
        await scheduler.stop()
        scheduler.start()
        await _wait_until(lambda: mock_service.run_cycle.await_count == 2)
        await scheduler.stop()

        assert not scheduler.running

    async def test_stop_cancels_cycle_waiting_on_retry_delay(
        self, build_service, subscriptions, billing_records
    ):
        sub = subscriptions.add(make_subscription())
        gateway = ScriptedGateway(default=declined())
        service = build_service(gateway, sleep=asyncio.sleep)
        retry = service.due_processor.retry
        scheduler = BillingCycleScheduler(service, interval_seconds=3600)

        scheduler.start()
        await _wait_until(lambda: bool(retry.pending_retries))
        await scheduler.stop()

        assert not scheduler.running
        assert retry.pending_retries == {}
        assert service.pending_retry_count == 0
        assert len(gateway.calls) == 1
        assert subscriptions.snapshot(sub.id).status == SubscriptionStatus.ACTIVE
        [record] = billing_records.for_subscription(sub.id)
        assert record.status == BillingRecordStatus.PENDING

    async def test_tick_does_not_wait_for_retry_delays(
        self, build_service, subscriptions, billing_records
    ):
        sub = subscriptions.add(make_subscription())
        service = build_service(ScriptedGateway(default=declined()), sleep=asyncio.sleep)
        scheduler = BillingCycleScheduler(service, interval_seconds=3600)

        result = await asyncio.wait_for(scheduler.tick(), timeout=1)

        assert result.due.count(SubscriptionOutcome.RETRY_SCHEDULED) == 1
        assert service.pending_retry_count == 1
        await scheduler.stop()
        assert service.pending_retry_count == 0
        [record] = billing_records.for_subscription(sub.id)
        assert record.status == BillingRecordStatus.PENDING
