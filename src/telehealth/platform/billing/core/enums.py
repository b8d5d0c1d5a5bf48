"""
Billing enums shared by the cycle engine, the stores and the reports.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status.

    Only ACTIVE and SUSPENDED take part in the billing cycle; the rest are
    out-of-cycle or terminal.
    """

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    TRIAL_ACTIVE = "trial_active"
    EXPIRED = "expired"


class BillingRecordStatus(str, Enum):
    """Billing record status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not BillingRecordStatus.PENDING


class PaymentEventType(str, Enum):
    """Audit event names written by the billing cycle."""

    PAYMENT_SUCCESS = "PaymentSuccess"
    PAYMENT_FAILED = "PaymentFailed"
    BILLING_ERROR = "BillingError"
    PAYMENT_RETRY_SUCCESS = "PaymentRetrySuccess"
    PAYMENT_RETRY_FAILED = "PaymentRetryFailed"
    USAGE_RESET = "UsageReset"


class AuditOutcome(str, Enum):
    """Outcome column of a payment audit event."""

    SUCCESS = "Success"
    FAILED = "Failed"
    ERROR = "Error"
