"""Configuration utilities for the coldvault CLI.

This module provides the config file helpers, client construction, error
reporting and progress rendering shared across CLI commands.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from coldvault.client.api import APIError, VaultClient
from coldvault.client.transfer.session import SessionError
from coldvault.client.transfer.types import TransferError, TransferProgress
from coldvault.core.config import VaultConfig


def get_config_dir() -> Path:
    """Get the configuration directory for coldvault.

    Returns:
        Path to ~/.coldvault or equivalent.
    """
    return Path.home() / ".coldvault"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def resolve_vault_config(endpoint: str | None, token: str | None) -> VaultConfig:
    """Build the service configuration from options, falling back to the file.

    Exits with an error if no endpoint or token is available.
    """
    config = load_config()
    endpoint = endpoint or config.get("endpoint_url")
    token = token or config.get("token")
    if not endpoint or not token:
        fail("No service configured. Run 'coldvault configure' or pass --endpoint/--token.")
    return VaultConfig(
        endpoint_url=endpoint,
        token=token,
        account_id=config.get("account_id", "-"),
    )


def create_client(ctx: click.Context) -> VaultClient:
    """Create the service client for the current invocation."""
    obj: dict[str, Any] = ctx.obj or {}
    return VaultClient(resolve_vault_config(obj.get("endpoint"), obj.get("token")))


def setup_logging(verbose: bool) -> None:
    """Send coldvault log records to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    coldvault_logger = logging.getLogger("coldvault")
    coldvault_logger.handlers = [handler]
    coldvault_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    coldvault_logger.propagate = False


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def report_error(error: Exception) -> NoReturn:
    """Print a classified failure and exit with status 1."""
    if isinstance(error, TransferError):
        click.echo(f"Error ({error.stage.value}): {error}", err=True)
    elif isinstance(error, APIError):
        status = f" [{error.status_code}]" if error.status_code else ""
        click.echo(f"Error (service{status}): {error}", err=True)
    elif isinstance(error, SessionError):
        click.echo(f"Error (session): {error}", err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def pretty_size(size: int | None) -> str:
    """Human-readable binary size (e.g., "1.50 GiB")."""
    if size is None:
        return "unknown"
    value = float(size)
    if value < 1024:
        return f"{size} B"
    for unit in ("KiB", "MiB", "GiB"):
        value /= 1024
        if value < 1024:
            return f"{value:.2f} {unit}"
    return f"{value / 1024:.2f} TiB"


def echo_progress(progress: TransferProgress) -> None:
    """Progress callback printing one line per part/window."""
    click.echo(
        f"{progress.operation} {progress.name}: {progress.current_unit}/"
        f"{progress.total_units} ({progress.percent:.1f}%, "
        f"{pretty_size(progress.bytes_transferred)} of {pretty_size(progress.total_bytes)})"
    )


@click.command()
@click.option("--endpoint", required=True, help="Service URL (e.g., https://vault.example.com).")
@click.option("--token", required=True, help="Access token.")
@click.option("--account", default="-", show_default=True, help="Account ID.")
def configure(endpoint: str, token: str, account: str) -> None:
    """Save service connection settings."""
    config = load_config()
    config["endpoint_url"] = endpoint.rstrip("/")
    config["token"] = token
    config["account_id"] = account
    save_config(config)
    click.echo(f"Configuration saved to {get_config_file()}")
