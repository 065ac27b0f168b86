"""Shared pytest configuration and fixtures."""

import os

# Set environment variables before any imports
# Background sweep and rate limits are exercised explicitly by their own tests
os.environ["RELAY_SWEEP"] = "0"
os.environ["RELAY_RATE_LIMITS"] = "0"
os.environ.pop("RELAY_ADMIN_TOKEN", None)


import pytest

from vaultrelay import jobs
from vaultrelay.metrics import metrics
from vaultrelay.ratelimit import reset_limiters

pytest_plugins = ["vaultrelay.testing"]


@pytest.fixture(autouse=True, scope="function")
def reset_relay_state():
    """Reset module-level relay state between tests."""
    reset_limiters()
    metrics.reset()
    jobs.last_sweep = None
    yield
