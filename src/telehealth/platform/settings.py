from __future__ import annotations

"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
This is the single source of truth for the billing platform configuration.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: BILLING__RETRY_DELAY_SECONDS=60
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("telehealth-billing", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full database URL")
        host: str = Field("localhost", description="Database host")
        port: int = Field(5432, description="Database port")
        database: str = Field("telehealth", description="Database name")
        username: str = Field("telehealth", description="Database username")
        password: str = Field("", description="Database password")

        # Connection pool
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Celery & Task Queue
    # ============================================================

    class CelerySettings(BaseModel):
        """Celery configuration."""

        broker_url: str = Field("redis://localhost:6379/0", description="Broker URL")
        result_backend: str = Field("redis://localhost:6379/1", description="Result backend")
        task_time_limit: int = Field(600, description="Hard time limit")
        task_soft_time_limit: int = Field(540, description="Soft time limit")

    celery: CelerySettings = CelerySettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability & Monitoring
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Observability configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_correlation_ids: bool = Field(True, description="Enable correlation IDs")
        enable_metrics: bool = Field(True, description="Enable metrics collection")
        otel_service_name: str = Field("telehealth-billing", description="Service name")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Billing Cycle Configuration
    # ============================================================

    class BillingSettings(BaseModel):
        """Automated billing cycle configuration."""

        # Scheduler
        cycle_interval_seconds: int = Field(3600, description="Seconds between billing cycles")
        error_cooldown_seconds: int = Field(
            300, description="Seconds to wait after a failed cycle before the next attempt"
        )
        scheduler_enabled: bool = Field(True, description="Register the periodic billing task")

        # Payment retries
        max_payment_attempts: int = Field(3, description="Charge attempts per billing record")
        retry_delay_seconds: int = Field(21600, description="Seconds between charge attempts")
        suspended_retry_cooldown_seconds: int = Field(
            21600, description="Seconds a subscription stays suspended before a retry"
        )

        # Processing
        billing_period_months: int = Field(1, description="Months added per successful charge")
        batch_concurrency: int = Field(10, description="Subscriptions processed in parallel")
        max_concurrent_charges: int = Field(5, description="Gateway calls in flight at once")
        report_window_days: int = Field(30, description="Default billing report window")
        billing_lease_margin_seconds: int = Field(
            3600, description="Slack added to the retry window for the billing lease"
        )

        # Collaborators
        payment_gateway: str | None = Field(
            None, description="Import path of the payment gateway factory (module:attr)"
        )
        send_payment_failure_notifications: bool = Field(
            True, description="Send payment failure notifications"
        )

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Any:
        """Accept environment names case-insensitively."""
        if isinstance(v, str):
            return v.lower()
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
