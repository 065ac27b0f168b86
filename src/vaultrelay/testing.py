"""Pytest fixtures for testing code that talks to a vault relay.

Usage in conftest.py:
    pytest_plugins = ["vaultrelay.testing"]

Available fixtures:
    - fake_clock: Controllable millisecond clock
    - vault_store: Fresh VaultStore driven by fake_clock
    - relay_client: VaultRelayClient bound to an in-process relay app
"""

from __future__ import annotations

import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from .client import VaultRelayClient
from .store import VaultStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms


@pytest.fixture
def fake_clock() -> FakeClock:
    """A FakeClock starting at a fixed epoch.

    Example:
        def test_expiry(vault_store, fake_clock):
            vault_store.post_message("msg-00001", "vault-0001", "blob")
            fake_clock.advance(MESSAGE_TTL_MS + 1)
            vault_store.sweep()
    """
    return FakeClock()


@pytest.fixture
def vault_store(fake_clock: FakeClock) -> VaultStore:
    """Fresh VaultStore using ``fake_clock``. No cleanup needed."""
    return VaultStore(clock=fake_clock)


@pytest.fixture
def relay_client() -> Generator[VaultRelayClient, None, None]:
    """Client for an in-process relay with sweep and rate limits off.

    Each use starts the app lifespan, so every test gets an empty store.
    """
    from .api import app
    from .ratelimit import reset_limiters

    saved = {k: os.environ.get(k) for k in ("RELAY_SWEEP", "RELAY_RATE_LIMITS")}
    os.environ["RELAY_SWEEP"] = "0"
    os.environ["RELAY_RATE_LIMITS"] = "0"
    reset_limiters()
    try:
        with TestClient(app) as http:
            yield VaultRelayClient(http_client=http)
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
