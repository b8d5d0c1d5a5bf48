"""Tests for billing cycle configuration."""

from datetime import timedelta

import pytest

from telehealth.platform.billing.config import (
    BillingCycleConfig,
    get_billing_cycle_config,
    set_billing_cycle_config,
)
from telehealth.platform.billing.exceptions import BillingConfigurationError
from telehealth.platform.settings import settings

pytestmark = pytest.mark.unit


class TestBillingCycleConfig:
    def test_defaults(self):
        config = BillingCycleConfig()

        assert config.cycle_interval_seconds == 3600
        assert config.error_cooldown_seconds == 300
        assert config.max_payment_attempts == 3
        assert config.retry_delay == timedelta(hours=6)
        assert config.suspended_retry_cooldown == timedelta(hours=6)
        assert config.billing_period_months == 1
        assert config.report_window == timedelta(days=30)

    @pytest.mark.parametrize(
        "field",
        ["max_payment_attempts", "batch_concurrency", "max_concurrent_charges", "billing_period_months"],
    )
    def test_rejects_non_positive_limits(self, field):
        with pytest.raises(BillingConfigurationError) as exc_info:
            BillingCycleConfig(**{field: 0})

        assert exc_info.value.context["config_key"] == field

    def test_rejects_negative_delay(self):
        with pytest.raises(BillingConfigurationError):
            BillingCycleConfig(retry_delay_seconds=-1)

    def test_from_env_reads_settings(self, monkeypatch):
        monkeypatch.setattr(settings.billing, "max_payment_attempts", 5)
        monkeypatch.setattr(settings.billing, "retry_delay_seconds", 60)

        config = BillingCycleConfig.from_env()

        assert config.max_payment_attempts == 5
        assert config.retry_delay_seconds == 60

    def test_global_instance_can_be_replaced(self):
        custom = BillingCycleConfig(batch_concurrency=2)

        set_billing_cycle_config(custom)

        assert get_billing_cycle_config() is custom
