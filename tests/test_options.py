"""Tests for RelayOptions configuration class."""

import pytest

from vaultrelay.options import DEFAULT_SWEEP_INTERVAL, RelayConfigError, RelayOptions
from vaultrelay.store import MAX_MESSAGES_PER_VAULT, MESSAGE_TTL_MS


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start each test without relay environment overrides."""
    for name in (
        "RELAY_MAX_MESSAGES",
        "RELAY_MESSAGE_TTL_MS",
        "RELAY_SWEEP_INTERVAL",
        "RELAY_SWEEP",
        "RELAY_RATE_LIMITS",
        "RELAY_SLOW_OPERATION_MS",
        "RELAY_ADMIN_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


class TestRelayOptions:
    def test_defaults(self):
        opts = RelayOptions()
        assert opts.max_messages_per_vault == MAX_MESSAGES_PER_VAULT
        assert opts.message_ttl_ms == MESSAGE_TTL_MS
        assert opts.sweep_interval_seconds == DEFAULT_SWEEP_INTERVAL
        assert opts.sweep_enabled is True
        assert opts.rate_limits_enabled is True
        assert opts.slow_operation_ms == 100
        assert opts.admin_token is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RELAY_MAX_MESSAGES", "50")
        monkeypatch.setenv("RELAY_SWEEP_INTERVAL", "5")
        monkeypatch.setenv("RELAY_SWEEP", "0")
        monkeypatch.setenv("RELAY_ADMIN_TOKEN", "token")

        opts = RelayOptions()

        assert opts.max_messages_per_vault == 50
        assert opts.sweep_interval_seconds == 5
        assert opts.sweep_enabled is False
        assert opts.admin_token == "token"
        assert opts.from_env("max_messages_per_vault")
        assert not opts.from_env("message_ttl_ms")

    def test_explicit_values_win_over_env(self, monkeypatch):
        monkeypatch.setenv("RELAY_MAX_MESSAGES", "50")
        monkeypatch.setenv("RELAY_RATE_LIMITS", "0")

        opts = RelayOptions(max_messages_per_vault=10, rate_limits_enabled=True)

        assert opts.max_messages_per_vault == 10
        assert opts.rate_limits_enabled is True
        assert not opts.from_env("max_messages_per_vault")

    def test_flag_values(self, monkeypatch):
        monkeypatch.setenv("RELAY_RATE_LIMITS", "yes")
        assert RelayOptions().rate_limits_enabled is True
        monkeypatch.setenv("RELAY_RATE_LIMITS", "off")
        assert RelayOptions().rate_limits_enabled is False

    def test_non_integer_env(self, monkeypatch):
        monkeypatch.setenv("RELAY_MESSAGE_TTL_MS", "a week")
        with pytest.raises(RelayConfigError, match="RELAY_MESSAGE_TTL_MS"):
            RelayOptions()

    def test_empty_admin_token_is_none(self, monkeypatch):
        monkeypatch.setenv("RELAY_ADMIN_TOKEN", "")
        assert RelayOptions().admin_token is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_messages_per_vault": 0},
            {"message_ttl_ms": -1},
            {"sweep_interval_seconds": 0},
            {"slow_operation_ms": 0},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(RelayConfigError, match="must be positive"):
            RelayOptions(**kwargs)

    def test_to_dict_hides_token(self):
        data = RelayOptions(admin_token="secret").to_dict()
        assert data["has_admin_token"] is True
        assert "secret" not in data.values()

    def test_slow_operation_threshold_from_env(self, monkeypatch):
        monkeypatch.setenv("RELAY_SLOW_OPERATION_MS", "250")
        opts = RelayOptions()
        assert opts.slow_operation_ms == 250
        assert opts.to_dict()["slow_operation_ms"] == 250
        assert opts.from_env("slow_operation_ms")
