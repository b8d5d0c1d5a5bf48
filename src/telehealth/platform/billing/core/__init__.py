"""
Core billing models shared by the billing cycle and its stores.
"""

from telehealth.platform.billing.core.enums import (
    AuditOutcome,
    BillingRecordStatus,
    PaymentEventType,
    SubscriptionStatus,
)
from telehealth.platform.billing.core.models import (
    BillingAdjustment,
    BillingRecord,
    PaymentAnalyticsSummary,
    Subscription,
    UsageCounter,
)

__all__ = [
    "AuditOutcome",
    "BillingRecordStatus",
    "PaymentEventType",
    "SubscriptionStatus",
    "BillingAdjustment",
    "BillingRecord",
    "PaymentAnalyticsSummary",
    "Subscription",
    "UsageCounter",
]
