"""
Global pytest configuration and fixtures for the telehealth billing tests.
"""

import os

# Settings are read once at import time, so the environment is pinned first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")
os.environ.setdefault("OBSERVABILITY__LOG_LEVEL", "WARNING")
os.environ.setdefault("BILLING__SCHEDULER_ENABLED", "false")

import pytest

from telehealth.platform.billing.config import set_billing_cycle_config
from telehealth.platform.billing.metrics import set_billing_cycle_metrics


@pytest.fixture(autouse=True)
def reset_billing_globals():
    """Forget cached billing config and metrics between tests."""
    set_billing_cycle_config(None)
    set_billing_cycle_metrics(None)
    yield
    set_billing_cycle_config(None)
    set_billing_cycle_metrics(None)
