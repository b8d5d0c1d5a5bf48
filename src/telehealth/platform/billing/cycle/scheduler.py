"""
Periodic billing cycle loop.
"""

import asyncio

import structlog

from telehealth.platform.billing.config import BillingCycleConfig
from telehealth.platform.billing.cycle.results import BillingCycleResult
from telehealth.platform.billing.cycle.service import BillingCycleService

logger = structlog.get_logger(__name__)


class BillingCycleScheduler:
    """Runs the billing cycle every ``interval_seconds`` until stopped.

    A cycle that raises is logged and followed by the shorter error cooldown
    instead of the regular interval. A tick does not wait for payment retries;
    they finish in the background while the loop keeps its interval, and the
    next tick skips the subscriptions they still hold. ``stop()`` cancels the
    in-flight cycle and every retry still waiting.
    """

    def __init__(
        self,
        service: BillingCycleService,
        interval_seconds: float = 3600,
        error_cooldown_seconds: float = 300,
    ) -> None:
        self.service = service
        self.interval_seconds = interval_seconds
        self.error_cooldown_seconds = error_cooldown_seconds
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[BillingCycleResult] | None = None

    @classmethod
    def from_config(
        cls, service: BillingCycleService, config: BillingCycleConfig
    ) -> "BillingCycleScheduler":
        return cls(
            service,
            interval_seconds=config.cycle_interval_seconds,
            error_cooldown_seconds=config.error_cooldown_seconds,
        )

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def tick(self) -> BillingCycleResult:
        """Run exactly one scheduled cycle."""
        self._cycle_task = asyncio.create_task(
            self.service.run_cycle(trigger="scheduled", wait_for_retries=False)
        )
        try:
            return await self._cycle_task
        finally:
            self._cycle_task = None

    async def run_forever(self) -> None:
        logger.info(
            "billing.scheduler.started",
            interval_seconds=self.interval_seconds,
            error_cooldown_seconds=self.error_cooldown_seconds,
        )

        while not self._stop_event.is_set():
            try:
                await self.tick()
                delay = self.interval_seconds
            except asyncio.CancelledError:
                if self._stop_event.is_set():
                    break
                raise
            except Exception as exc:
                logger.error(
                    "billing.scheduler.cycle_failed",
                    error=str(exc),
                    retry_in_seconds=self.error_cooldown_seconds,
                    exc_info=True,
                )
                delay = self.error_cooldown_seconds

            if await self._wait(delay):
                break

        logger.info("billing.scheduler.stopped")

    def start(self) -> asyncio.Task[None]:
        """Start the loop as a background task."""
        if self._loop_task is None or self._loop_task.done():
            self._stop_event.clear()
            self._loop_task = asyncio.create_task(
                self.run_forever(), name="billing-cycle-scheduler"
            )
        return self._loop_task

    async def stop(self) -> None:
        """Stop the loop, cancelling any cycle that is still running."""
        self._stop_event.set()
        if self._cycle_task is not None and not self._cycle_task.done():
            self._cycle_task.cancel()
        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        await self.service.cancel_pending_retries()

    async def _wait(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; return True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True
