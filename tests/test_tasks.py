"""Tests for the billing Celery tasks."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from telehealth.platform.billing.exceptions import BillingCycleError
from telehealth.platform.celery_app import celery_app, setup_periodic_tasks
from telehealth.platform.settings import settings
from telehealth.platform.tasks import (
    _billing_cycle_report,
    _run_billing_cycle,
    billing_cycle_report_task,
    billing_cycle_time_limit,
    run_billing_cycle_task,
)

pytestmark = pytest.mark.unit


class TestRunBillingCycleTask:
    @patch("telehealth.platform.tasks._run_billing_cycle")
    def test_returns_cycle_summary(self, mock_run):
        mock_run.return_value = {"status": "ok", "due": {"total": 3}}

        result = run_billing_cycle_task()

        assert result == {"status": "ok", "due": {"total": 3}}
        mock_run.assert_called_once()

    def test_task_is_routed_to_billing_queue(self):
        assert run_billing_cycle_task.name == "billing.run_cycle"
        assert celery_app.conf.task_routes["billing.*"] == {"queue": "billing"}

    def test_time_limit_covers_retry_delays(self):
        billing = settings.billing
        expected = settings.celery.task_time_limit + billing.retry_delay_seconds * (
            billing.max_payment_attempts - 1
        )

        assert billing_cycle_time_limit() == expected
        assert run_billing_cycle_task.time_limit == expected

    def test_cycle_is_acknowledged_on_receipt(self):
        assert run_billing_cycle_task.acks_late is False
        assert celery_app.conf.task_acks_late is True


@pytest.mark.asyncio
class TestRunBillingCycle:
    @patch("telehealth.platform.tasks.dispose_engine", new_callable=AsyncMock)
    @patch("telehealth.platform.tasks.build_billing_cycle_service")
    async def test_ok_result(self, mock_build, mock_dispose):
        cycle = MagicMock()
        cycle.summary.return_value = {"due": {"total": 1}}
        mock_build.return_value.run_cycle = AsyncMock(return_value=cycle)

        result = await _run_billing_cycle()

        assert result == {"status": "ok", "due": {"total": 1}}
        mock_build.return_value.run_cycle.assert_awaited_once_with(trigger="scheduled")
        mock_dispose.assert_awaited_once()

    @patch("telehealth.platform.tasks.dispose_engine", new_callable=AsyncMock)
    @patch("telehealth.platform.tasks.build_billing_cycle_service")
    async def test_cycle_failure_is_reported(self, mock_build, mock_dispose):
        mock_build.return_value.run_cycle = AsyncMock(
            side_effect=BillingCycleError("Billing cycle failed: database unavailable")
        )

        result = await _run_billing_cycle()

        assert result["status"] == "failed"
        assert result["error"] == {
            "error_code": "BILLING_CYCLE_ERROR",
            "message": "Billing cycle failed: database unavailable",
            "context": {},
            "recovery_hint": None,
        }
        mock_dispose.assert_awaited_once()

    @patch("telehealth.platform.tasks.dispose_engine", new_callable=AsyncMock)
    @patch("telehealth.platform.tasks.build_billing_cycle_service")
    async def test_report_is_serialized(self, mock_build, mock_dispose):
        report = MagicMock()
        report.model_dump.return_value = {"total_processed": 4}
        mock_build.return_value.get_billing_cycle_report = AsyncMock(return_value=report)

        result = await _billing_cycle_report(None, None)

        assert result == {"total_processed": 4}
        report.model_dump.assert_called_once_with(mode="json")
        mock_dispose.assert_awaited_once()


class TestBillingCycleReportTask:
    @patch("telehealth.platform.tasks._billing_cycle_report")
    def test_parses_iso_dates(self, mock_report):
        mock_report.return_value = {"total_processed": 0}

        result = billing_cycle_report_task("2024-03-01T00:00:00", "2024-03-15T00:00:00+00:00")

        assert result == {"total_processed": 0}
        mock_report.assert_called_once_with(
            datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 3, 15, tzinfo=UTC)
        )

    @patch("telehealth.platform.tasks._billing_cycle_report")
    def test_defaults_to_service_window(self, mock_report):
        mock_report.return_value = {}

        billing_cycle_report_task()

        mock_report.assert_called_once_with(None, None)


class TestPeriodicTaskRegistration:
    def test_registers_cycle_when_enabled(self):
        sender = MagicMock()

        with patch.object(settings.billing, "scheduler_enabled", True):
            setup_periodic_tasks(sender)

        sender.add_periodic_task.assert_called_once()
        interval = sender.add_periodic_task.call_args.args[0]
        assert interval == float(settings.billing.cycle_interval_seconds)
        assert sender.add_periodic_task.call_args.kwargs["name"] == "billing-run-cycle"

    def test_skips_registration_when_disabled(self):
        sender = MagicMock()

        with patch.object(settings.billing, "scheduler_enabled", False):
            setup_periodic_tasks(sender)

        sender.add_periodic_task.assert_not_called()
