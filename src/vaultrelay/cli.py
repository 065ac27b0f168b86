"""CLI for running and inspecting a vault relay.

Settings for talking to a running relay live in ~/.config/vaultrelay/config.yaml.
"""

from __future__ import annotations

import json
import os
import sys

import cyclopts

from .client import RelayError, VaultRelayClient
from .config import CliConfig, get_config_path

app = cyclopts.App(
    name="vaultrelay",
    help="Ephemeral, content-blind relay for encrypted blobs",
)

config_app = cyclopts.App(name="config", help="CLI configuration")
app.command(config_app)


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def get_client(url: str | None = None) -> VaultRelayClient:
    """Build a client from the saved config, optionally overriding the URL."""
    cfg = CliConfig.load()
    return VaultRelayClient(url or cfg.url, admin_token=cfg.admin_token)


# --- Server Command ---


@app.command
def serve(
    *,
    host: str = "0.0.0.0",
    port: int = 3000,
    reload: bool = False,
    sweep_interval: int | None = None,
    no_rate_limits: bool = False,
):
    """Run the relay server.

    All relay state is in memory and is lost on restart.

    Args:
        host: Interface to bind
        port: Port to listen on
        reload: Auto-reload on code changes (development)
        sweep_interval: Seconds between sweep passes (overrides RELAY_SWEEP_INTERVAL)
        no_rate_limits: Disable per-client rate limits (development only!)
    """
    import uvicorn

    if sweep_interval is not None:
        os.environ["RELAY_SWEEP_INTERVAL"] = str(sweep_interval)
    if no_rate_limits:
        os.environ["RELAY_RATE_LIMITS"] = "0"
        print("WARNING: Rate limits disabled. Do not use in production.\n")

    print(f"vaultrelay  port={port}")
    print("Blobs are opaque; the relay never inspects payloads.")
    print("Messages are deleted on full acknowledgement or after 7 days.\n")

    uvicorn.run(
        "vaultrelay.api:app",
        host=host,
        port=port,
        reload=reload,
    )


# --- Inspection Commands ---


@app.command
def health(*, url: str | None = None):
    """Check that a relay is up."""
    with get_client(url) as client:
        try:
            print_json(client.health())
        except RelayError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


@app.command
def stats(*, url: str | None = None):
    """Show vault and message counts for a running relay."""
    with get_client(url) as client:
        try:
            print_json(client.stats())
        except RelayError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


@app.command
def metrics(*, url: str | None = None):
    """Show request and store timing metrics for a running relay."""
    with get_client(url) as client:
        try:
            print_json(client.metrics())
        except RelayError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


# --- Config Commands ---


@config_app.command
def show():
    """Show the current CLI configuration."""
    cfg = CliConfig.load()
    print(f"Config file: {get_config_path()}")
    print_json(cfg.to_dict())


@config_app.command
def set_url(url: str):
    """Set the relay URL used by the CLI."""
    cfg = CliConfig.load()
    cfg.url = url.rstrip("/")
    path = cfg.save()
    print(f"URL set to {cfg.url} ({path})")


@config_app.command
def set_token(token: str | None = None):
    """Set (or clear, with no argument) the admin token."""
    cfg = CliConfig.load()
    cfg.admin_token = token or None
    cfg.save()
    print("Admin token saved." if token else "Admin token cleared.")


def main():
    app()


if __name__ == "__main__":
    main()
