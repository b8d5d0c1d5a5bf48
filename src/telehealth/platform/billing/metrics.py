"""
Billing cycle metrics and tracing
"""

from contextlib import AbstractContextManager
from decimal import Decimal

from opentelemetry import metrics, trace
from opentelemetry.metrics import Counter, Histogram, Meter
from opentelemetry.trace import Span, Tracer


class BillingCycleMetrics:
    """Billing cycle metrics collector"""

    def __init__(self, meter: Meter | None = None, tracer: Tracer | None = None) -> None:
        self.meter = meter or metrics.get_meter("telehealth.billing")
        self.tracer = tracer or trace.get_tracer("telehealth.billing")

        # Cycle metrics
        self.cycle_run_counter = self._create_counter(
            name="billing.cycle.runs",
            description="Number of billing cycles started",
        )
        self.cycle_failed_counter = self._create_counter(
            name="billing.cycle.failed",
            description="Number of billing cycles aborted by an error",
        )
        self.cycle_duration_histogram = self._create_histogram(
            name="billing.cycle.duration",
            description="Billing cycle duration",
            unit="s",
        )

        # Payment metrics
        self.payment_succeeded_counter = self._create_counter(
            name="billing.cycle.payment.succeeded",
            description="Number of successful subscription charges",
        )
        self.payment_failed_counter = self._create_counter(
            name="billing.cycle.payment.failed",
            description="Number of failed subscription charges",
        )
        self.revenue_counter = self._create_counter(
            name="billing.cycle.revenue",
            description="Amount collected by the billing cycle",
            unit="currency",
        )

        # Subscription lifecycle metrics
        self.suspension_counter = self._create_counter(
            name="billing.cycle.subscription.suspended",
            description="Number of subscriptions suspended after failed payment",
        )
        self.reactivation_counter = self._create_counter(
            name="billing.cycle.subscription.reactivated",
            description="Number of suspended subscriptions reactivated",
        )
        self.usage_reset_counter = self._create_counter(
            name="billing.cycle.usage.reset",
            description="Number of subscription usage resets",
        )

    def record_cycle_started(self, trigger: str) -> None:
        self.cycle_run_counter.add(1, {"trigger": trigger})

    def record_cycle_completed(self, trigger: str, duration_seconds: float) -> None:
        self.cycle_duration_histogram.record(duration_seconds, {"trigger": trigger})

    def record_cycle_failed(self, trigger: str, error_type: str) -> None:
        self.cycle_failed_counter.add(1, {"trigger": trigger, "error_type": error_type})

    def record_payment(self, success: bool, amount: Decimal, retry: bool = False) -> None:
        attributes = {"retry": retry}
        if success:
            self.payment_succeeded_counter.add(1, attributes)
            self.revenue_counter.add(float(amount), attributes)
        else:
            self.payment_failed_counter.add(1, attributes)

    def record_suspension(self) -> None:
        self.suspension_counter.add(1)

    def record_reactivation(self) -> None:
        self.reactivation_counter.add(1)

    def record_usage_reset(self, counters: int) -> None:
        self.usage_reset_counter.add(1, {"has_counters": counters > 0})

    def trace_cycle(self, trigger: str) -> AbstractContextManager[Span]:
        """Create a trace span for one billing cycle"""
        return self.tracer.start_as_current_span(
            "billing.cycle.run",
            attributes={"trigger": trigger},
        )

    def _create_counter(self, name: str, description: str, unit: str = "1") -> Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    def _create_histogram(self, name: str, description: str, unit: str = "1") -> Histogram:
        return self.meter.create_histogram(name=name, description=description, unit=unit)


# Global metrics instance
_billing_cycle_metrics: BillingCycleMetrics | None = None


def get_billing_cycle_metrics() -> BillingCycleMetrics:
    """Get the global billing cycle metrics instance"""
    global _billing_cycle_metrics
    if _billing_cycle_metrics is None:
        _billing_cycle_metrics = BillingCycleMetrics()
    return _billing_cycle_metrics


def set_billing_cycle_metrics(metrics_instance: BillingCycleMetrics | None) -> None:
    """Set (or clear) the global billing cycle metrics instance"""
    global _billing_cycle_metrics
    _billing_cycle_metrics = metrics_instance
