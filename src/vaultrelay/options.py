"""Configuration options for the relay server.

Provides RelayOptions for tuning store limits, the sweep job and the HTTP
layer. Supports environment variable overrides for containerized deployments.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from .metrics import DEFAULT_SLOW_OPERATION_MS
from .store import MAX_MESSAGES_PER_VAULT, MESSAGE_TTL_MS

DEFAULT_SWEEP_INTERVAL = 60 * 60


class RelayConfigError(Exception):
    """Raised when RelayOptions configuration is invalid."""

    pass


def _env_flag(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


def _env_int(name: str) -> int | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise RelayConfigError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class RelayOptions:
    """Configuration options for the relay server.

    Environment Variables:
        RELAY_MAX_MESSAGES: Backlog cap per vault
        RELAY_MESSAGE_TTL_MS: Message time-to-live in milliseconds
        RELAY_SWEEP_INTERVAL: Seconds between sweep passes
        RELAY_SWEEP: Set to 0 to disable the background sweep
        RELAY_RATE_LIMITS: Set to 0 to disable rate limiting
        RELAY_SLOW_OPERATION_MS: Store operations slower than this are logged
        RELAY_ADMIN_TOKEN: Token required by /admin/stats and /metrics
            (X-Admin-Token header)

    Explicit constructor arguments win over the environment.

    Examples:
        # Defaults plus environment
        options = RelayOptions()

        # Fast sweep for local testing
        options = RelayOptions(sweep_interval_seconds=5)
    """

    max_messages_per_vault: int | None = None
    """Backlog cap per vault. Oldest messages are dropped past it."""

    message_ttl_ms: int | None = None
    """Age after which the sweep drops a message."""

    sweep_interval_seconds: int | None = None
    """Seconds between background sweep passes."""

    sweep_enabled: bool | None = None
    """Run the background sweep loop."""

    rate_limits_enabled: bool | None = None
    """Apply per-client rate limits to /api endpoints."""

    slow_operation_ms: int | None = None
    """Store operations taking longer than this are counted and logged as slow."""

    admin_token: str | None = None
    """If set, /admin/stats and /metrics require a matching X-Admin-Token header."""

    _overridden: set[str] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        """Apply environment variable overrides, defaults, then validate."""
        self._apply_env_overrides()
        self._apply_defaults()
        self._validate()

    def _apply_env_overrides(self) -> None:
        env_values: dict[str, Any] = {
            "max_messages_per_vault": _env_int("RELAY_MAX_MESSAGES"),
            "message_ttl_ms": _env_int("RELAY_MESSAGE_TTL_MS"),
            "sweep_interval_seconds": _env_int("RELAY_SWEEP_INTERVAL"),
            "sweep_enabled": _env_flag("RELAY_SWEEP"),
            "rate_limits_enabled": _env_flag("RELAY_RATE_LIMITS"),
            "slow_operation_ms": _env_int("RELAY_SLOW_OPERATION_MS"),
            "admin_token": os.environ.get("RELAY_ADMIN_TOKEN") or None,
        }
        for name, value in env_values.items():
            if getattr(self, name) is None and value is not None:
                setattr(self, name, value)
                self._overridden.add(name)

    def _apply_defaults(self) -> None:
        if self.max_messages_per_vault is None:
            self.max_messages_per_vault = MAX_MESSAGES_PER_VAULT
        if self.message_ttl_ms is None:
            self.message_ttl_ms = MESSAGE_TTL_MS
        if self.sweep_interval_seconds is None:
            self.sweep_interval_seconds = DEFAULT_SWEEP_INTERVAL
        if self.sweep_enabled is None:
            self.sweep_enabled = True
        if self.rate_limits_enabled is None:
            self.rate_limits_enabled = True
        if self.slow_operation_ms is None:
            self.slow_operation_ms = DEFAULT_SLOW_OPERATION_MS

    def _validate(self) -> None:
        """Validate that options are usable."""
        assert self.max_messages_per_vault is not None
        assert self.message_ttl_ms is not None
        assert self.sweep_interval_seconds is not None
        assert self.slow_operation_ms is not None

        if self.max_messages_per_vault <= 0:
            raise RelayConfigError("max_messages_per_vault must be positive.")
        if self.message_ttl_ms <= 0:
            raise RelayConfigError("message_ttl_ms must be positive.")
        if self.sweep_interval_seconds <= 0:
            raise RelayConfigError("sweep_interval_seconds must be positive.")
        if self.slow_operation_ms <= 0:
            raise RelayConfigError("slow_operation_ms must be positive.")

    def from_env(self, name: str) -> bool:
        """True if ``name`` was taken from an environment variable."""
        return name in self._overridden

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (for debugging/logging)."""
        return {
            "max_messages_per_vault": self.max_messages_per_vault,
            "message_ttl_ms": self.message_ttl_ms,
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "sweep_enabled": self.sweep_enabled,
            "rate_limits_enabled": self.rate_limits_enabled,
            "slow_operation_ms": self.slow_operation_ms,
            "has_admin_token": self.admin_token is not None,
        }
