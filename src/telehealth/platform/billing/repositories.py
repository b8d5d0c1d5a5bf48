"""
SQLAlchemy-backed stores for the billing cycle.

Each operation opens its own session from the injected ``async_sessionmaker``
and commits (or rolls back) before returning, so concurrent subscription
tasks never share a session.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import Select, and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telehealth.platform.billing.core.entities import (
    BillingRecordEntity,
    SubscriptionEntity,
    UsageCounterEntity,
)
from telehealth.platform.billing.core.enums import BillingRecordStatus, SubscriptionStatus
from telehealth.platform.billing.core.models import (
    BillingRecord,
    PaymentAnalyticsSummary,
    Subscription,
    UsageCounter,
    utcnow,
)
from telehealth.platform.billing.exceptions import (
    BillingRecordNotFoundError,
    SubscriptionNotFoundError,
)
from telehealth.platform.billing.mappers import (
    apply_billing_record,
    apply_subscription,
    billing_record_from_entity,
    subscription_from_entity,
    usage_counter_from_entity,
)

logger = structlog.get_logger(__name__)


class _SessionScoped:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class SQLSubscriptionStore(_SessionScoped):
    """Subscription persistence for the billing cycle."""

    async def get(self, subscription_id: str) -> Subscription | None:
        async with self._session() as session:
            entity = await session.get(SubscriptionEntity, subscription_id)
            return subscription_from_entity(entity) if entity else None

    async def get_due_for_billing(self, as_of: datetime) -> list[Subscription]:
        stmt = (
            select(SubscriptionEntity)
            .where(
                and_(
                    SubscriptionEntity.status == SubscriptionStatus.ACTIVE.value,
                    SubscriptionEntity.next_billing_date <= as_of,
                )
            )
            .order_by(SubscriptionEntity.next_billing_date)
        )
        return await self._fetch(stmt)

    async def get_suspended(self) -> list[Subscription]:
        stmt = (
            select(SubscriptionEntity)
            .where(SubscriptionEntity.status == SubscriptionStatus.SUSPENDED.value)
            .order_by(SubscriptionEntity.suspended_date)
        )
        return await self._fetch(stmt)

    async def get_due_for_usage_reset(self, as_of: datetime) -> list[Subscription]:
        stmt = select(SubscriptionEntity).where(
            and_(
                SubscriptionEntity.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionEntity.last_billing_date.is_not(None),
                SubscriptionEntity.last_billing_date <= as_of,
                or_(
                    SubscriptionEntity.usage_reset_at.is_(None),
                    SubscriptionEntity.usage_reset_at < SubscriptionEntity.last_billing_date,
                ),
            )
        )
        return await self._fetch(stmt)

    async def update(self, subscription: Subscription) -> Subscription:
        async with self._session() as session:
            entity = await session.get(SubscriptionEntity, subscription.id)
            if entity is None:
                raise SubscriptionNotFoundError(
                    f"Subscription {subscription.id} not found", subscription_id=subscription.id
                )
            apply_subscription(entity, subscription)
            await session.flush()
            await session.refresh(entity)
            return subscription_from_entity(entity)

    async def reset_usage_counters(self, subscription_id: str, as_of: datetime) -> int:
        """Zero the usage counters of one subscription and roll their period."""
        async with self._session() as session:
            subscription = await session.get(SubscriptionEntity, subscription_id)
            if subscription is None:
                raise SubscriptionNotFoundError(
                    f"Subscription {subscription_id} not found", subscription_id=subscription_id
                )

            result = await session.execute(
                select(UsageCounterEntity).where(
                    UsageCounterEntity.subscription_id == subscription_id
                )
            )
            counters = list(result.scalars().all())

            period_start = subscription.last_billing_date or as_of
            for counter in counters:
                counter.used_value = 0
                counter.reset_at = as_of
                counter.usage_period_start = period_start
                counter.usage_period_end = subscription.next_billing_date

            subscription.usage_reset_at = as_of

            logger.debug(
                "billing.usage.counters_reset",
                subscription_id=subscription_id,
                counters=len(counters),
            )
            return len(counters)

    async def list_usage_counters(self, subscription_id: str) -> list[UsageCounter]:
        async with self._session() as session:
            result = await session.execute(
                select(UsageCounterEntity)
                .where(UsageCounterEntity.subscription_id == subscription_id)
                .order_by(UsageCounterEntity.name)
            )
            return [usage_counter_from_entity(row) for row in result.scalars().all()]

    async def count_created_between(self, start: datetime, end: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(SubscriptionEntity)
            .where(
                and_(
                    SubscriptionEntity.created_at >= start,
                    SubscriptionEntity.created_at <= end,
                )
            )
        )
        async with self._session() as session:
            return await session.scalar(stmt) or 0

    async def count_suspended(self) -> int:
        stmt = (
            select(func.count())
            .select_from(SubscriptionEntity)
            .where(SubscriptionEntity.status == SubscriptionStatus.SUSPENDED.value)
        )
        async with self._session() as session:
            return await session.scalar(stmt) or 0

    async def count_with_failed_payments(self) -> int:
        stmt = (
            select(func.count())
            .select_from(SubscriptionEntity)
            .where(SubscriptionEntity.failed_payment_attempts > 0)
        )
        async with self._session() as session:
            return await session.scalar(stmt) or 0

    async def claim_billing_lease(
        self, subscription_id: str, owner: str, now: datetime, expires_at: datetime
    ) -> bool:
        """Claim the billing lease of a subscription with one conditional UPDATE."""
        stmt = (
            update(SubscriptionEntity)
            .where(
                and_(
                    SubscriptionEntity.id == subscription_id,
                    or_(
                        SubscriptionEntity.billing_lock_owner.is_(None),
                        SubscriptionEntity.billing_lock_owner == owner,
                        SubscriptionEntity.billing_lock_until.is_(None),
                        SubscriptionEntity.billing_lock_until <= now,
                    ),
                )
            )
            .values(billing_lock_owner=owner, billing_lock_until=expires_at)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            claimed = result.rowcount == 1

        logger.debug(
            "billing.lease.claim",
            subscription_id=subscription_id,
            owner=owner,
            claimed=claimed,
        )
        return claimed

    async def release_billing_lease(self, subscription_id: str, owner: str) -> None:
        stmt = (
            update(SubscriptionEntity)
            .where(
                and_(
                    SubscriptionEntity.id == subscription_id,
                    SubscriptionEntity.billing_lock_owner == owner,
                )
            )
            .values(billing_lock_owner=None, billing_lock_until=None)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            await session.execute(stmt)

    async def _fetch(self, stmt: Select[tuple[SubscriptionEntity]]) -> list[Subscription]:
        async with self._session() as session:
            result = await session.execute(stmt)
            return [subscription_from_entity(row) for row in result.scalars().all()]


class SQLBillingRecordStore(_SessionScoped):
    """Billing record persistence."""

    async def create(
        self,
        user_id: str,
        subscription_id: str | None,
        amount: Decimal,
        description: str,
        due_date: datetime,
    ) -> BillingRecord:
        async with self._session() as session:
            entity = BillingRecordEntity(
                user_id=user_id,
                subscription_id=subscription_id,
                amount=amount,
                description=description,
                due_date=due_date,
                status=BillingRecordStatus.PENDING.value,
                created_at=utcnow(),
            )
            session.add(entity)
            await session.flush()
            return billing_record_from_entity(entity)

    async def get(self, billing_record_id: str) -> BillingRecord | None:
        async with self._session() as session:
            entity = await session.get(BillingRecordEntity, billing_record_id)
            return billing_record_from_entity(entity) if entity else None

    async def update(self, record: BillingRecord) -> BillingRecord:
        async with self._session() as session:
            entity = await session.get(BillingRecordEntity, record.id)
            if entity is None:
                raise BillingRecordNotFoundError(
                    f"Billing record {record.id} not found", billing_record_id=record.id
                )
            apply_billing_record(entity, record)
            await session.flush()
            return billing_record_from_entity(entity)

    async def list_for_subscription(self, subscription_id: str) -> list[BillingRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(BillingRecordEntity)
                .where(BillingRecordEntity.subscription_id == subscription_id)
                .order_by(BillingRecordEntity.created_at)
            )
            return [billing_record_from_entity(row) for row in result.scalars().all()]


class SQLPaymentAnalytics(_SessionScoped):
    """Payment totals computed from billing records."""

    async def get_payment_analytics(
        self, start: datetime, end: datetime
    ) -> PaymentAnalyticsSummary:
        paid = BillingRecordStatus.PAID.value
        failed = BillingRecordStatus.FAILED.value
        refunded = BillingRecordStatus.REFUNDED.value

        stmt = select(
            func.count(BillingRecordEntity.id).label("total"),
            func.sum(case((BillingRecordEntity.status == paid, 1), else_=0)).label("successful"),
            func.sum(case((BillingRecordEntity.status == failed, 1), else_=0)).label("failed"),
            func.coalesce(
                func.sum(
                    case((BillingRecordEntity.status == paid, BillingRecordEntity.amount), else_=0)
                ),
                0,
            ).label("successful_amount"),
            func.coalesce(
                func.sum(
                    case(
                        (BillingRecordEntity.status == failed, BillingRecordEntity.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("failed_amount"),
            func.coalesce(
                func.sum(
                    case(
                        (BillingRecordEntity.status == refunded, BillingRecordEntity.amount),
                        else_=0,
                    )
                ),
                0,
            ).label("refunded_amount"),
        ).where(
            and_(
                BillingRecordEntity.created_at >= start,
                BillingRecordEntity.created_at <= end,
            )
        )

        async with self._session() as session:
            row = (await session.execute(stmt)).one()

        return PaymentAnalyticsSummary(
            successful_transactions=row.successful or 0,
            failed_transactions=row.failed or 0,
            total_transactions=row.total or 0,
            successful_amount=_to_decimal(row.successful_amount),
            failed_amount=_to_decimal(row.failed_amount),
            refunded_amount=_to_decimal(row.refunded_amount),
        )


def _to_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value)).quantize(Decimal("0.01"))


__all__ = [
    "SQLSubscriptionStore",
    "SQLBillingRecordStore",
    "SQLPaymentAnalytics",
]
