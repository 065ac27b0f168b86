"""Configuration management for the vaultrelay CLI.

Manages ~/.config/vaultrelay/config.yaml, which records the relay URL the
CLI talks to and an optional admin token for /admin/stats and /metrics.
Honors XDG_CONFIG_HOME.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SERVER_URL = "http://127.0.0.1:3000"


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "vaultrelay"


def get_config_path() -> Path:
    """Get the CLI config file path."""
    return get_config_dir() / "config.yaml"


@dataclass
class CliConfig:
    """CLI configuration."""

    url: str = DEFAULT_SERVER_URL
    admin_token: str | None = None

    def save(self) -> Path:
        """Save config to file."""
        path = get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {"url": self.url}
        if self.admin_token:
            data["admin_token"] = self.admin_token

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        return path

    @classmethod
    def load(cls) -> "CliConfig":
        """Load config from file, or return defaults."""
        path = get_config_path()

        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(
            url=data.get("url", DEFAULT_SERVER_URL),
            admin_token=data.get("admin_token"),
        )

    @classmethod
    def exists(cls) -> bool:
        """Check if config file exists."""
        return get_config_path().exists()

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "has_admin_token": self.admin_token is not None}
