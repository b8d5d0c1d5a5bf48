"""
Data mappers for billing domain.

Transforms between database entities and billing transfer models.
"""

from datetime import UTC, datetime

from telehealth.platform.billing.core.entities import (
    BillingRecordEntity,
    SubscriptionEntity,
    UsageCounterEntity,
)
from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.billing.core.models import BillingRecord, Subscription, UsageCounter


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def subscription_from_entity(entity: SubscriptionEntity) -> Subscription:
    return Subscription(
        id=entity.id,
        user_id=entity.user_id,
        plan_name=entity.plan_name,
        status=SubscriptionStatus(entity.status),
        current_price=entity.current_price,
        next_billing_date=ensure_utc(entity.next_billing_date),
        last_billing_date=ensure_utc(entity.last_billing_date),
        failed_payment_attempts=entity.failed_payment_attempts,
        last_payment_error=entity.last_payment_error,
        last_payment_failed_date=ensure_utc(entity.last_payment_failed_date),
        suspended_date=ensure_utc(entity.suspended_date),
        usage_reset_at=ensure_utc(entity.usage_reset_at),
        created_at=ensure_utc(entity.created_at),
        updated_at=ensure_utc(entity.updated_at),
    )


def apply_subscription(entity: SubscriptionEntity, subscription: Subscription) -> None:
    """Copy the mutable billing fields of ``subscription`` onto ``entity``."""
    entity.status = subscription.status.value
    entity.current_price = subscription.current_price
    entity.next_billing_date = subscription.next_billing_date
    entity.last_billing_date = subscription.last_billing_date
    entity.failed_payment_attempts = subscription.failed_payment_attempts
    entity.last_payment_error = subscription.last_payment_error
    entity.last_payment_failed_date = subscription.last_payment_failed_date
    entity.suspended_date = subscription.suspended_date
    entity.usage_reset_at = subscription.usage_reset_at


def billing_record_from_entity(entity: BillingRecordEntity) -> BillingRecord:
    return BillingRecord(
        id=entity.id,
        user_id=entity.user_id,
        subscription_id=entity.subscription_id,
        amount=entity.amount,
        description=entity.description,
        due_date=ensure_utc(entity.due_date),
        status=BillingRecordStatus(entity.status),
        paid_at=ensure_utc(entity.paid_at),
        payment_reference=entity.payment_reference,
        failure_reason=entity.failure_reason,
        created_at=ensure_utc(entity.created_at),
    )


def apply_billing_record(entity: BillingRecordEntity, record: BillingRecord) -> None:
    entity.status = record.status.value
    entity.paid_at = record.paid_at
    entity.payment_reference = record.payment_reference
    entity.failure_reason = record.failure_reason
    entity.description = record.description


def usage_counter_from_entity(entity: UsageCounterEntity) -> UsageCounter:
    return UsageCounter(
        id=entity.id,
        subscription_id=entity.subscription_id,
        name=entity.name,
        used_value=entity.used_value,
        allowed_value=entity.allowed_value,
        usage_period_start=ensure_utc(entity.usage_period_start),
        usage_period_end=ensure_utc(entity.usage_period_end),
        reset_at=ensure_utc(entity.reset_at),
    )
