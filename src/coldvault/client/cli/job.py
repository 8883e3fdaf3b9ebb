"""Job commands for the coldvault CLI.

Commands:
- job inventory: Start an inventory-retrieval job
- job archive: Start an archive-retrieval job
- job list: List jobs of a vault
- job describe: Show one job
- job get-inventory: Print the output of a completed inventory job
- job get-archive: Save the output of a completed job in one request
- job run: Retrieve an archive end to end (initiate, wait, verified download)
"""

from __future__ import annotations

from pathlib import Path

import click

from coldvault.client.api import APIError, Job
from coldvault.client.cli.config import (
    create_client,
    echo_progress,
    pretty_size,
    report_error,
)
from coldvault.client.transfer import (
    ChunkedDownloader,
    JobPoller,
    RetryPolicy,
    TransferError,
)
from coldvault.core.config import MIB, TransferConfig
from coldvault.core.types import JobAction


def _echo_job(job: Job) -> None:
    click.echo(f"Action: {job.action.value}")
    if job.action is JobAction.ARCHIVE_RETRIEVAL:
        click.echo(f"Archive ID: {job.archive_id}")
        click.echo(f"Archive Size: {job.archive_size} ({pretty_size(job.archive_size)})")
    click.echo(f"Completed: {job.completed}")
    if job.completed:
        click.echo(f"Completion Date: {job.completion_date}")
    click.echo(f"Creation Date: {job.creation_date}")
    if job.completed and job.action is JobAction.INVENTORY_RETRIEVAL:
        click.echo(f"Inventory Size: {job.inventory_size} ({pretty_size(job.inventory_size)})")
    click.echo(f"Job Description: {job.description or ''}")
    click.echo(f"Job ID: {job.id}")
    if job.action is JobAction.ARCHIVE_RETRIEVAL:
        click.echo(f"SHA256 Tree Hash: {job.tree_hash}")
    click.echo(f"SNS Topic: {job.sns_topic or ''}")
    click.echo(f"Status Code: {job.status_code}")
    click.echo(f"Status Message: {job.status_message or ''}")
    click.echo(f"Vault ARN: {job.vault_arn or ''}")


def _policy(ctx: click.Context) -> RetryPolicy:
    retries = (ctx.obj or {}).get("retries", TransferConfig.max_retries)
    return RetryPolicy.from_config(TransferConfig(max_retries=retries))


@click.group()
def job() -> None:
    """Start, inspect and download retrieval jobs."""


@job.command()
@click.argument("vault")
@click.option("--topic", default=None, help="Notification topic for job completion.")
@click.option("--description", default=None, help="Job description.")
@click.pass_context
def inventory(ctx: click.Context, vault: str, topic: str | None, description: str | None) -> None:
    """Start an inventory-retrieval job for VAULT."""
    try:
        with create_client(ctx) as client:
            poller = JobPoller(client, vault, _policy(ctx))
            job_id = poller.initiate_inventory(topic, description)
    except (TransferError, APIError) as e:
        report_error(e)
    click.echo(job_id)


@job.command()
@click.argument("vault")
@click.argument("archive_id")
@click.option("--topic", default=None, help="Notification topic for job completion.")
@click.option("--description", default=None, help="Job description.")
@click.pass_context
def archive(
    ctx: click.Context,
    vault: str,
    archive_id: str,
    topic: str | None,
    description: str | None,
) -> None:
    """Start an archive-retrieval job for ARCHIVE_ID in VAULT."""
    try:
        with create_client(ctx) as client:
            poller = JobPoller(client, vault, _policy(ctx))
            job_id = poller.initiate_retrieval(archive_id, topic, description)
    except (TransferError, APIError) as e:
        report_error(e)
    click.echo(job_id)


@job.command(name="list")
@click.argument("vault")
@click.option(
    "--completed/--pending",
    default=None,
    help="Only show completed or pending jobs.",
)
@click.pass_context
def list_jobs(ctx: click.Context, vault: str, completed: bool | None) -> None:
    """List the jobs of VAULT."""
    try:
        with create_client(ctx) as client:
            jobs: list[Job] = []
            marker = None
            while True:
                page = client.list_jobs(vault, completed=completed, marker=marker)
                jobs.extend(page.jobs)
                marker = page.marker
                if not marker:
                    break
    except APIError as e:
        report_error(e)

    for j in jobs:
        _echo_job(j)
        click.echo()


@job.command()
@click.argument("vault")
@click.argument("job_id")
@click.pass_context
def describe(ctx: click.Context, vault: str, job_id: str) -> None:
    """Show the status of JOB_ID."""
    try:
        with create_client(ctx) as client:
            snapshot = client.describe_job(vault, job_id)
    except APIError as e:
        report_error(e)
    _echo_job(snapshot)


@job.command(name="get-inventory")
@click.argument("vault")
@click.argument("job_id")
@click.pass_context
def get_inventory(ctx: click.Context, vault: str, job_id: str) -> None:
    """Print the inventory produced by JOB_ID."""
    try:
        with create_client(ctx) as client:
            result = client.get_inventory(vault, job_id)
    except APIError as e:
        report_error(e)

    click.echo(f"Vault ARN: {result.vault_arn}")
    click.echo(f"Inventory Date: {result.inventory_date}")
    for entry in result.archives:
        click.echo()
        click.echo(f"Archive ID: {entry.archive_id}")
        click.echo(f"Archive Description: {entry.description}")
        click.echo(f"Creation Date: {entry.creation_date}")
        click.echo(f"Size: {entry.size} ({pretty_size(entry.size)})")
        click.echo(f"SHA256 Tree Hash: {entry.tree_hash}")


@job.command(name="get-archive")
@click.argument("vault")
@click.argument("job_id")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def get_archive(ctx: click.Context, vault: str, job_id: str, output: Path) -> None:
    """Save the whole output of JOB_ID to OUTPUT in one request."""
    try:
        with create_client(ctx) as client:
            snapshot = client.describe_job(vault, job_id)
            downloader = ChunkedDownloader(client, vault, _policy(ctx))
            downloader.fetch_job_output(snapshot, output)
    except (TransferError, APIError) as e:
        report_error(e)
    click.echo(f"Saved {output}")


@job.command()
@click.argument("vault")
@click.argument("archive_id")
@click.argument("window_mib", type=click.IntRange(min=1))
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--topic", default=None, help="Notification topic for job completion.")
@click.option("--description", default=None, help="Job description.")
@click.option(
    "--initial-delay",
    type=float,
    default=TransferConfig.initial_poll_delay,
    show_default=True,
    help="Seconds to wait before the first status check.",
)
@click.option(
    "--poll-interval",
    type=float,
    default=TransferConfig.poll_interval,
    show_default=True,
    help="Seconds between status checks.",
)
@click.option("--max-wait", type=float, default=None, help="Give up after this many seconds.")
@click.pass_context
def run(
    ctx: click.Context,
    vault: str,
    archive_id: str,
    window_mib: int,
    output: Path,
    topic: str | None,
    description: str | None,
    initial_delay: float,
    poll_interval: float,
    max_wait: float | None,
) -> None:
    """Retrieve ARCHIVE_ID from VAULT into OUTPUT.

    Starts a retrieval job, waits for it to complete, then downloads the
    archive in WINDOW_MIB windows, verifying every window and the whole file.
    """
    retries = (ctx.obj or {}).get("retries", TransferConfig.max_retries)
    try:
        config = TransferConfig(
            max_retries=retries,
            window_size=window_mib * MIB,
            initial_poll_delay=initial_delay,
            poll_interval=poll_interval,
            max_wait=max_wait,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    policy = RetryPolicy.from_config(config)

    try:
        with create_client(ctx) as client:
            poller = JobPoller(
                client,
                vault,
                policy,
                initial_delay=config.initial_poll_delay,
                poll_interval=config.poll_interval,
                max_wait=config.max_wait,
            )
            job_id = poller.initiate_retrieval(archive_id, topic, description)
            click.echo(f"Initiated retrieval job {job_id}")

            completed = poller.wait(job_id)
            click.echo(
                f"Job completed: {pretty_size(completed.archive_size)}, "
                f"tree hash {completed.tree_hash}"
            )

            downloader = ChunkedDownloader(
                client,
                vault,
                policy,
                window_size=config.window_size,
                progress_callback=echo_progress,
            )
            result = downloader.download(completed, output)
    except (TransferError, APIError) as e:
        report_error(e)

    click.echo(f"Downloaded {result.local_path} ({pretty_size(result.size)}), tree hash verified")
