"""
Per-subscription mutual exclusion.

A subscription that is already being worked on, for example by a manual
trigger racing the scheduled tick, is reported as busy instead of waited on.
An ``asyncio.Lock`` registry covers tasks of one process. With a lease store
the guard also claims a lease on the subscription row, so billing runs in
other processes (CLI, Celery workers, a second scheduler) are excluded too.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from uuid import uuid4

import structlog

from telehealth.platform.billing.core.models import utcnow
from telehealth.platform.billing.cycle.protocols import BillingLeaseStore

logger = structlog.get_logger(__name__)


class SubscriptionBillingGuard:
    """Registry of per-subscription locks with non-blocking acquisition."""

    def __init__(
        self,
        leases: BillingLeaseStore | None = None,
        lease_seconds: float = 3600,
        owner: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self.leases = leases
        self.lease_seconds = lease_seconds
        self.owner = owner or uuid4().hex
        self._clock = clock

    @asynccontextmanager
    async def hold(self, subscription_id: str) -> AsyncIterator[bool]:
        """Yield True if the subscription was claimed, False if it is busy."""
        lock = self._locks.setdefault(subscription_id, asyncio.Lock())
        if lock.locked():
            yield False
            return

        await lock.acquire()
        try:
            if not await self._claim_lease(subscription_id):
                logger.info(
                    "billing.guard.leased_elsewhere",
                    subscription_id=subscription_id,
                    owner=self.owner,
                )
                yield False
                return
            try:
                yield True
            finally:
                await self._release_lease(subscription_id)
        finally:
            lock.release()
            if self._locks.get(subscription_id) is lock:
                del self._locks[subscription_id]

    async def _claim_lease(self, subscription_id: str) -> bool:
        if self.leases is None:
            return True
        now = self._clock()
        return await self.leases.claim_billing_lease(
            subscription_id,
            self.owner,
            now,
            now + timedelta(seconds=self.lease_seconds),
        )

    async def _release_lease(self, subscription_id: str) -> None:
        if self.leases is None:
            return
        try:
            await self.leases.release_billing_lease(subscription_id, self.owner)
        except Exception as exc:
            # An unreleased lease expires on its own
            logger.warning(
                "billing.guard.release_failed",
                subscription_id=subscription_id,
                owner=self.owner,
                error=str(exc),
            )

    def is_held(self, subscription_id: str) -> bool:
        lock = self._locks.get(subscription_id)
        return lock is not None and lock.locked()

    @property
    def held(self) -> set[str]:
        return {key for key, lock in self._locks.items() if lock.locked()}
