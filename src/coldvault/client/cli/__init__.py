"""Command-line interface for coldvault.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Save service connection settings
- job: Start, inspect and download retrieval jobs
- multipart: Plan, run and abort resumable multipart uploads
"""

from __future__ import annotations

import click

from coldvault.client.cli.config import (
    configure,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
    setup_logging,
)
from coldvault.client.cli.job import job
from coldvault.client.cli.multipart import multipart
from coldvault.client.transfer.retry import DEFAULT_MAX_RETRIES


@click.group()
@click.version_option(package_name="coldvault")
@click.option("--endpoint", envvar="COLDVAULT_ENDPOINT", default=None, help="Service URL.")
@click.option("--token", envvar="COLDVAULT_TOKEN", default=None, help="Access token.")
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=DEFAULT_MAX_RETRIES,
    show_default=True,
    help="Consecutive failures tolerated before giving up.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    endpoint: str | None,
    token: str | None,
    retries: int,
    verbose: bool,
) -> None:
    """coldvault - Verified transfers to and from cold-storage vaults."""
    ctx.ensure_object(dict)
    ctx.obj["endpoint"] = endpoint
    ctx.obj["token"] = token
    ctx.obj["retries"] = retries
    setup_logging(verbose)


cli.add_command(configure)
cli.add_command(job)
cli.add_command(multipart)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
