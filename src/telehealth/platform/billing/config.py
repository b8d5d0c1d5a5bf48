"""
Billing cycle configuration
"""

from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field, model_validator

from telehealth.platform.billing.exceptions import BillingConfigurationError


class BillingCycleConfig(BaseModel):
    """Automated billing cycle configuration"""

    model_config = ConfigDict(frozen=True)

    # Scheduler
    cycle_interval_seconds: float = Field(3600, description="Seconds between billing cycles")
    error_cooldown_seconds: float = Field(
        300, description="Seconds to wait after a failed cycle"
    )

    # Retry policy
    max_payment_attempts: int = Field(3, description="Charge attempts per billing record")
    retry_delay_seconds: float = Field(21600, description="Seconds between charge attempts")
    suspended_retry_cooldown_seconds: float = Field(
        21600, description="Seconds before a suspended subscription is retried"
    )

    # Processing
    billing_period_months: int = Field(1, description="Months added per successful charge")
    batch_concurrency: int = Field(10, description="Subscriptions processed in parallel")
    max_concurrent_charges: int = Field(5, description="Gateway calls in flight at once")
    report_window_days: int = Field(30, description="Default billing report window")
    billing_lease_margin_seconds: float = Field(
        3600, description="Slack added to the retry window for the billing lease"
    )
    send_payment_failure_notifications: bool = Field(
        True, description="Notify users when a charge fails"
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "BillingCycleConfig":
        if self.max_payment_attempts < 1:
            raise BillingConfigurationError(
                "max_payment_attempts must be at least 1", config_key="max_payment_attempts"
            )
        if self.batch_concurrency < 1:
            raise BillingConfigurationError(
                "batch_concurrency must be at least 1", config_key="batch_concurrency"
            )
        if self.max_concurrent_charges < 1:
            raise BillingConfigurationError(
                "max_concurrent_charges must be at least 1", config_key="max_concurrent_charges"
            )
        if self.billing_period_months < 1:
            raise BillingConfigurationError(
                "billing_period_months must be at least 1", config_key="billing_period_months"
            )
        for key in (
            "cycle_interval_seconds",
            "error_cooldown_seconds",
            "retry_delay_seconds",
            "suspended_retry_cooldown_seconds",
            "billing_lease_margin_seconds",
        ):
            if getattr(self, key) < 0:
                raise BillingConfigurationError(f"{key} cannot be negative", config_key=key)
        return self

    @property
    def retry_delay(self) -> timedelta:
        return timedelta(seconds=self.retry_delay_seconds)

    @property
    def suspended_retry_cooldown(self) -> timedelta:
        return timedelta(seconds=self.suspended_retry_cooldown_seconds)

    @property
    def report_window(self) -> timedelta:
        return timedelta(days=self.report_window_days)

    @property
    def billing_lease_seconds(self) -> float:
        """How long a subscription stays claimed: every retry delay plus the margin."""
        retry_window = (self.max_payment_attempts - 1) * self.retry_delay_seconds
        return retry_window + self.billing_lease_margin_seconds

    @classmethod
    def from_env(cls) -> "BillingCycleConfig":
        """Create configuration from settings"""
        from telehealth.platform.settings import settings

        billing = settings.billing
        return cls(
            cycle_interval_seconds=billing.cycle_interval_seconds,
            error_cooldown_seconds=billing.error_cooldown_seconds,
            max_payment_attempts=billing.max_payment_attempts,
            retry_delay_seconds=billing.retry_delay_seconds,
            suspended_retry_cooldown_seconds=billing.suspended_retry_cooldown_seconds,
            billing_period_months=billing.billing_period_months,
            batch_concurrency=billing.batch_concurrency,
            max_concurrent_charges=billing.max_concurrent_charges,
            report_window_days=billing.report_window_days,
            billing_lease_margin_seconds=billing.billing_lease_margin_seconds,
            send_payment_failure_notifications=billing.send_payment_failure_notifications,
        )


# Global configuration instance
_billing_cycle_config: BillingCycleConfig | None = None


def get_billing_cycle_config() -> BillingCycleConfig:
    """Get the global billing cycle configuration instance"""
    global _billing_cycle_config
    if _billing_cycle_config is None:
        _billing_cycle_config = BillingCycleConfig.from_env()
    return _billing_cycle_config


def set_billing_cycle_config(config: BillingCycleConfig | None) -> None:
    """Set (or clear) the global billing cycle configuration instance"""
    global _billing_cycle_config
    _billing_cycle_config = config
