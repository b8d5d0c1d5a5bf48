"""
SQLAlchemy tables for the billing cycle.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.db import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid4())


class SubscriptionEntity(Base, TimestampMixin):
    """User subscription row."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    plan_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value
    )

    # Billing
    current_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    next_billing_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_billing_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Failure tracking
    failed_payment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_payment_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_payment_failed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    suspended_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    usage_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Billing lease, claimed by the process currently charging this subscription
    billing_lock_owner: Mapped[str | None] = mapped_column(String(64), nullable=True)
    billing_lock_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_subscriptions_status_next_billing", "status", "next_billing_date"),
        Index("ix_subscriptions_created_at", "created_at"),
    )


class BillingRecordEntity(Base):
    """One payment attempt."""

    __tablename__ = "billing_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=True, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BillingRecordStatus.PENDING.value
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("ix_billing_records_status_created", "status", "created_at"),)


class BillingAdjustmentEntity(Base):
    """Amount adjustment attached to a billing record."""

    __tablename__ = "billing_adjustments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    billing_record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("billing_records.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class UsageCounterEntity(Base, TimestampMixin):
    """Per-cycle usage counter for one subscription privilege."""

    __tablename__ = "subscription_usage_counters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    used_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allowed_value: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    usage_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


__all__ = [
    "SubscriptionEntity",
    "BillingRecordEntity",
    "BillingAdjustmentEntity",
    "UsageCounterEntity",
]
