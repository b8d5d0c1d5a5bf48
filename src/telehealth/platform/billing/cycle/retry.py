"""
Bounded-attempt payment retry.

The backoff between attempts is an ``asyncio`` sleep on the calling
subscription's own task, so it can be cancelled. Callers are told when a
backoff starts, so a batch can stop waiting on that task. Gateway calls are
bounded by a shared semaphore that is released before the backoff wait.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

import structlog

from telehealth.platform.billing.config import BillingCycleConfig
from telehealth.platform.billing.core.models import utcnow
from telehealth.platform.billing.cycle.protocols import PaymentGateway
from telehealth.platform.billing.cycle.results import ChargeFailed, ChargeSucceeded

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
BackoffCallback = Callable[[str], None]
ClockFunc = Callable[[], datetime]


class RetryCoordinator:
    """Charges a billing record up to ``max_attempts`` times."""

    def __init__(
        self,
        gateway: PaymentGateway,
        max_attempts: int = 3,
        retry_delay_seconds: float = 21600,
        max_concurrent_charges: int = 5,
        sleep: SleepFunc = asyncio.sleep,
        clock: ClockFunc = utcnow,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._charge_slots = asyncio.Semaphore(max_concurrent_charges)
        self._sleep = sleep
        self._clock = clock
        # billing record id -> time of the next attempt
        self.pending_retries: dict[str, datetime] = {}

    @classmethod
    def from_config(
        cls,
        gateway: PaymentGateway,
        config: BillingCycleConfig,
        sleep: SleepFunc = asyncio.sleep,
        clock: ClockFunc = utcnow,
    ) -> "RetryCoordinator":
        return cls(
            gateway,
            max_attempts=config.max_payment_attempts,
            retry_delay_seconds=config.retry_delay_seconds,
            max_concurrent_charges=config.max_concurrent_charges,
            sleep=sleep,
            clock=clock,
        )

    async def execute(
        self, billing_record_id: str, on_backoff: BackoffCallback | None = None
    ) -> ChargeSucceeded | ChargeFailed:
        """
        Charge ``billing_record_id`` with retries.

        Returns the first success, or a failure carrying the last error once
        every attempt is used. Gateway exceptions count as failed attempts;
        only cancellation propagates. ``on_backoff`` is called with the record
        id each time a retry delay starts.
        """
        last_error = "Payment declined"

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self._charge_slots:
                    outcome = await self.gateway.charge(billing_record_id)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                logger.error(
                    "billing.payment.attempt_error",
                    billing_record_id=billing_record_id,
                    attempt=attempt,
                    error=last_error,
                    exc_info=True,
                )
            else:
                if isinstance(outcome, ChargeSucceeded):
                    if attempt > 1:
                        logger.info(
                            "billing.payment.succeeded_after_retry",
                            billing_record_id=billing_record_id,
                            attempt=attempt,
                        )
                    return outcome.model_copy(update={"attempts": attempt})
                last_error = outcome.error_message or last_error

            if attempt < self.max_attempts:
                logger.warning(
                    "billing.payment.attempt_failed",
                    billing_record_id=billing_record_id,
                    attempt=attempt,
                    retry_in_seconds=self.retry_delay_seconds,
                    error=last_error,
                )
                if on_backoff is not None:
                    on_backoff(billing_record_id)
                await self._wait_before_retry(billing_record_id)

        return ChargeFailed(
            error_message=f"Payment failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        )

    async def _wait_before_retry(self, billing_record_id: str) -> None:
        self.pending_retries[billing_record_id] = self._clock() + timedelta(
            seconds=self.retry_delay_seconds
        )
        try:
            await self._sleep(self.retry_delay_seconds)
        finally:
            self.pending_retries.pop(billing_record_id, None)
