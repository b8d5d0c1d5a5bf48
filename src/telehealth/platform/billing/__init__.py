"""
Billing module.

Provides the automated billing cycle for recurring subscriptions:
- Billing of due subscriptions with bounded payment retries
- Suspension and cooldown reactivation
- Per-cycle usage counter resets
- Billing cycle reporting
"""

from telehealth.platform.billing.exceptions import (
    BillingConfigurationError,
    BillingCycleError,
    BillingError,
    BillingRecordError,
    BillingRecordNotFoundError,
    BillingRecordStateError,
    PaymentError,
    PaymentGatewayError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
    UsageTrackingError,
)

__all__ = [
    "BillingError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "SubscriptionStateError",
    "PaymentError",
    "PaymentGatewayError",
    "BillingRecordError",
    "BillingRecordNotFoundError",
    "BillingRecordStateError",
    "BillingCycleError",
    "UsageTrackingError",
    "BillingConfigurationError",
]
