"""
Wiring of the billing cycle service.
"""

import asyncio
import importlib
from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from telehealth.platform.billing.config import BillingCycleConfig, get_billing_cycle_config
from telehealth.platform.billing.core.models import utcnow
from telehealth.platform.billing.cycle.guard import SubscriptionBillingGuard
from telehealth.platform.billing.cycle.processor import SubscriptionBillingProcessor
from telehealth.platform.billing.cycle.protocols import (
    AuditSink,
    BillingRecordStore,
    NotificationSink,
    PaymentAnalytics,
    PaymentGateway,
    SubscriptionStore,
)
from telehealth.platform.billing.cycle.reporting import BillingCycleReporter
from telehealth.platform.billing.cycle.retry import RetryCoordinator, SleepFunc
from telehealth.platform.billing.cycle.service import BillingCycleService
from telehealth.platform.billing.cycle.sinks import (
    LoggingNotificationSink,
    SafeAuditSink,
    SafeNotifier,
    StructlogAuditSink,
)
from telehealth.platform.billing.cycle.suspended import SuspendedSubscriptionRetryProcessor
from telehealth.platform.billing.cycle.usage import UsageCounterResetter
from telehealth.platform.billing.exceptions import PaymentGatewayError
from telehealth.platform.billing.metrics import BillingCycleMetrics, get_billing_cycle_metrics

logger = structlog.get_logger(__name__)


def load_payment_gateway(path: str) -> PaymentGateway:
    """
    Load a payment gateway from a ``"module:attribute"`` import path.

    The attribute is either a gateway instance or a zero-argument callable
    (usually a class) returning one.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise PaymentGatewayError(
            f"Invalid payment gateway path '{path}', expected 'module:attribute'", gateway=path
        )

    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise PaymentGatewayError(
            f"Cannot load payment gateway '{path}': {exc}", gateway=path
        ) from exc

    gateway = target
    if isinstance(target, type) or (callable(target) and not hasattr(target, "charge")):
        gateway = target()
    if not callable(getattr(gateway, "charge", None)):
        raise PaymentGatewayError(
            f"Payment gateway '{path}' does not provide a charge() method", gateway=path
        )
    return gateway


def resolve_payment_gateway(gateway: PaymentGateway | None = None) -> PaymentGateway:
    if gateway is not None:
        return gateway

    from telehealth.platform.settings import settings

    if not settings.billing.payment_gateway:
        raise PaymentGatewayError(
            "No payment gateway configured; set BILLING__PAYMENT_GATEWAY to 'module:attribute'"
        )
    return load_payment_gateway(settings.billing.payment_gateway)


def build_billing_cycle_service(
    gateway: PaymentGateway | None = None,
    *,
    config: BillingCycleConfig | None = None,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    subscriptions: SubscriptionStore | None = None,
    billing_records: BillingRecordStore | None = None,
    analytics: PaymentAnalytics | None = None,
    audit: AuditSink | None = None,
    notifier: NotificationSink | None = None,
    metrics: BillingCycleMetrics | None = None,
    guard: SubscriptionBillingGuard | None = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: SleepFunc = asyncio.sleep,
) -> BillingCycleService:
    """
    Build a billing cycle service.

    Stores default to the SQLAlchemy repositories over ``session_maker`` (or
    the application session factory). The gateway defaults to the one named
    in settings. The default guard claims billing leases through the
    subscription store, so services built in different processes exclude
    each other.
    """
    config = config or get_billing_cycle_config()
    gateway = resolve_payment_gateway(gateway)

    if subscriptions is None or billing_records is None or analytics is None:
        from telehealth.platform.billing.repositories import (
            SQLBillingRecordStore,
            SQLPaymentAnalytics,
            SQLSubscriptionStore,
        )

        if session_maker is None:
            from telehealth.platform.db import get_async_session_maker

            session_maker = get_async_session_maker()
        subscriptions = subscriptions or SQLSubscriptionStore(session_maker)
        billing_records = billing_records or SQLBillingRecordStore(session_maker)
        analytics = analytics or SQLPaymentAnalytics(session_maker)

    safe_audit = SafeAuditSink(audit or StructlogAuditSink())
    safe_notifier = SafeNotifier(notifier or LoggingNotificationSink())
    metrics = metrics or get_billing_cycle_metrics()
    guard = guard or SubscriptionBillingGuard(
        leases=subscriptions, lease_seconds=config.billing_lease_seconds, clock=clock
    )
    retry = RetryCoordinator.from_config(gateway, config, sleep=sleep, clock=clock)

    charging = {
        "subscriptions": subscriptions,
        "billing_records": billing_records,
        "retry": retry,
        "audit": safe_audit,
        "notifier": safe_notifier,
        "guard": guard,
        "config": config,
        "metrics": metrics,
        "clock": clock,
    }

    logger.debug(
        "billing.cycle.service_built",
        gateway=type(gateway).__name__,
        max_payment_attempts=config.max_payment_attempts,
        batch_concurrency=config.batch_concurrency,
    )
    return BillingCycleService(
        due_processor=SubscriptionBillingProcessor(**charging),
        suspended_processor=SuspendedSubscriptionRetryProcessor(**charging),
        usage_resetter=UsageCounterResetter(
            subscriptions, safe_audit, guard, config, metrics=metrics, clock=clock
        ),
        reporter=BillingCycleReporter(subscriptions, analytics, config, clock=clock),
        metrics=metrics,
        clock=clock,
    )
