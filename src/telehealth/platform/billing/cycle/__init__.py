"""
Automated billing cycle.

Bills due subscriptions, retries failed payments, suspends and reactivates
subscriptions, and resets usage counters on a fixed schedule.
"""

from telehealth.platform.billing.cycle.factory import build_billing_cycle_service
from telehealth.platform.billing.cycle.guard import SubscriptionBillingGuard
from telehealth.platform.billing.cycle.processor import SubscriptionBillingProcessor
from telehealth.platform.billing.cycle.reporting import BillingCycleReporter
from telehealth.platform.billing.cycle.results import (
    BatchResult,
    BillingCycleReport,
    BillingCycleResult,
    ChargeFailed,
    ChargeOutcome,
    ChargeSucceeded,
    ManualTriggerResult,
    SubscriptionOutcome,
    SubscriptionResult,
)
from telehealth.platform.billing.cycle.retry import RetryCoordinator
from telehealth.platform.billing.cycle.scheduler import BillingCycleScheduler
from telehealth.platform.billing.cycle.service import BillingCycleService
from telehealth.platform.billing.cycle.suspended import SuspendedSubscriptionRetryProcessor
from telehealth.platform.billing.cycle.usage import UsageCounterResetter

__all__ = [
    "build_billing_cycle_service",
    "BillingCycleService",
    "BillingCycleScheduler",
    "BillingCycleReporter",
    "SubscriptionBillingProcessor",
    "SuspendedSubscriptionRetryProcessor",
    "UsageCounterResetter",
    "RetryCoordinator",
    "SubscriptionBillingGuard",
    "BatchResult",
    "BillingCycleReport",
    "BillingCycleResult",
    "ChargeFailed",
    "ChargeOutcome",
    "ChargeSucceeded",
    "ManualTriggerResult",
    "SubscriptionOutcome",
    "SubscriptionResult",
]
