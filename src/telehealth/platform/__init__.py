"""
Telehealth Platform - automated subscription billing.

This package provides the recurring billing engine for the telehealth backend:
- Billing cycle scheduling (due subscriptions, suspended retries, usage resets)
- Bounded payment retries with cancellable backoff
- Subscription suspension and reactivation
- Billing cycle reporting
"""

__version__ = "1.0.0"
__author__ = "Telehealth Platform Team"


def get_version() -> str:
    """Get platform version."""
    return __version__
