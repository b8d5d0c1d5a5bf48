"""
Billing system exceptions.

Custom exceptions for billing operations with clear error messages.
Every error carries a machine-readable code, context and a recovery hint,
and serializes with ``to_dict()`` for task results and CLI output.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for reports and task results."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class SubscriptionError(BillingError):
    """Subscription-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            context=context,
            recovery_hint=recovery_hint,
        )


class SubscriptionNotFoundError(SubscriptionError):
    """Subscription not found error."""

    def __init__(self, message: str, subscription_id: str | None = None) -> None:
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the subscription ID and ensure it exists",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"


class SubscriptionStateError(SubscriptionError):
    """Invalid subscription state transition error."""

    def __init__(self, message: str, current_state: str, requested_state: str) -> None:
        super().__init__(
            message,
            context={"current_state": current_state, "requested_state": requested_state},
            recovery_hint=(
                f"Cannot transition from {current_state} to {requested_state}. "
                "Check subscription status first."
            ),
        )
        self.error_code = "INVALID_SUBSCRIPTION_STATE"


class PaymentError(BillingError):
    """Payment processing errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "PAYMENT_ERROR", context=context, recovery_hint=recovery_hint
        )


class PaymentGatewayError(PaymentError):
    """The payment gateway could not be reached or configured."""

    def __init__(self, message: str, gateway: str | None = None) -> None:
        context = {}
        if gateway:
            context["gateway"] = gateway

        super().__init__(
            message,
            context=context,
            recovery_hint="Check the payment gateway configuration and availability",
        )
        self.error_code = "PAYMENT_GATEWAY_ERROR"


class BillingRecordError(BillingError):
    """Billing record errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "BILLING_RECORD_ERROR",
            context=context,
            recovery_hint=recovery_hint,
        )


class BillingRecordNotFoundError(BillingRecordError):
    """Billing record not found error."""

    def __init__(self, message: str, billing_record_id: str | None = None) -> None:
        context = {}
        if billing_record_id:
            context["billing_record_id"] = billing_record_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the billing record ID and ensure it exists",
        )
        self.error_code = "BILLING_RECORD_NOT_FOUND"


class BillingRecordStateError(BillingRecordError):
    """A billing record was asked to leave a terminal status."""

    def __init__(self, message: str, current_state: str, requested_state: str) -> None:
        super().__init__(
            message,
            context={"current_state": current_state, "requested_state": requested_state},
            recovery_hint="Billing records settle once; issue an adjustment instead",
        )
        self.error_code = "INVALID_BILLING_RECORD_STATE"


class BillingCycleError(BillingError):
    """Billing cycle execution or reporting errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "BILLING_CYCLE_ERROR",
            context=context,
            recovery_hint=recovery_hint,
        )


class UsageTrackingError(BillingError):
    """Usage tracking errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "USAGE_TRACKING_ERROR",
            context=context,
            recovery_hint=recovery_hint,
        )


class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(
        self, message: str, config_key: str | None = None, recovery_hint: str | None = None
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "BILLING_CONFIG_ERROR",
            context=context,
            recovery_hint=recovery_hint or "Check billing configuration settings",
        )
