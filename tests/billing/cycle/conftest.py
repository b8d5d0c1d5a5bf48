"""Fixtures for billing cycle tests."""

import pytest

from telehealth.platform.billing.config import BillingCycleConfig
from telehealth.platform.billing.cycle.factory import build_billing_cycle_service
from telehealth.platform.billing.metrics import BillingCycleMetrics
from tests.billing.cycle.fakes import (
    FakeClock,
    InMemoryBillingRecordStore,
    InMemoryPaymentAnalytics,
    InMemorySubscriptionStore,
    RecordingAuditSink,
    RecordingNotificationSink,
    RecordingSleep,
    ScriptedGateway,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def subscriptions():
    return InMemorySubscriptionStore()


@pytest.fixture
def billing_records(clock):
    return InMemoryBillingRecordStore(clock)


@pytest.fixture
def analytics(billing_records):
    return InMemoryPaymentAnalytics(billing_records)


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def config():
    return BillingCycleConfig()


@pytest.fixture
def build_service(config, subscriptions, billing_records, analytics, audit, notifier, clock, sleep):
    """Build a service around the in-memory collaborators and a given gateway."""

    def _build(gateway, **overrides):
        options = {
            "config": config,
            "subscriptions": subscriptions,
            "billing_records": billing_records,
            "analytics": analytics,
            "audit": audit,
            "notifier": notifier,
            "metrics": BillingCycleMetrics(),
            "clock": clock,
            "sleep": sleep,
        }
        options.update(overrides)
        return build_billing_cycle_service(gateway, **options)

    return _build


@pytest.fixture
def service(build_service, gateway):
    return build_service(gateway)
