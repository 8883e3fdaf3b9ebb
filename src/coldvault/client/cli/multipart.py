"""Multipart upload commands for the coldvault CLI.

Commands:
- multipart init: Hash a file into a new upload session record
- multipart print: Show a session record
- multipart upload: Upload (or resume) the parts of a session and complete it
- multipart abort: Abort a session's upload on the service
- multipart list-uploads: List in-progress uploads of a vault

The session record of FILE lives next to it as "FILE.upload.json".
"""

from __future__ import annotations

from pathlib import Path

import click

from coldvault.client.api import APIError, VaultClient
from coldvault.client.cli.config import (
    create_client,
    echo_progress,
    fail,
    pretty_size,
    report_error,
)
from coldvault.client.transfer import ChunkedUploader, RetryPolicy, TransferError
from coldvault.client.transfer.session import (
    SessionError,
    UploadSession,
    default_session_path,
    plan_upload,
)
from coldvault.core.config import MIB, TransferConfig


def _load_session(file: Path) -> tuple[UploadSession, Path]:
    session_path = default_session_path(file)
    if not session_path.exists():
        fail(f"No upload session for {file}. Run 'coldvault multipart init' first.")
    try:
        return UploadSession.load(session_path), session_path
    except SessionError as e:
        report_error(e)


def _uploader(ctx: click.Context, session_path: Path) -> tuple[ChunkedUploader, VaultClient]:
    retries = (ctx.obj or {}).get("retries", TransferConfig.max_retries)
    policy = RetryPolicy.from_config(TransferConfig(max_retries=retries))
    client = create_client(ctx)
    return ChunkedUploader(client, policy, session_path, progress_callback=echo_progress), client


@click.group()
def multipart() -> None:
    """Plan, run and abort resumable multipart uploads."""


@multipart.command()
@click.argument("vault")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("part_mib", type=click.IntRange(min=1))
@click.option("--description", default=None, help="Archive description.")
@click.option("--force", is_flag=True, help="Replace an existing session record.")
def init(vault: str, file: Path, part_mib: int, description: str | None, force: bool) -> None:
    """Hash FILE into an upload session for VAULT with PART_MIB parts."""
    session_path = default_session_path(file)
    if session_path.exists() and not force:
        fail(
            f"An upload session already exists at {session_path}. "
            "Upload or abort it, or pass --force."
        )

    try:
        session = plan_upload(vault, file, part_mib * MIB, description, echo_progress)
        session.save(session_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="PART_MIB") from e
    except SessionError as e:
        report_error(e)

    click.echo(
        f"Planned {session.part_count} parts of {pretty_size(session.part_size)} "
        f"for {file} ({pretty_size(session.archive_size)})"
    )
    click.echo(f"Session saved to {session_path}")


@multipart.command(name="print")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
def print_session(file: Path) -> None:
    """Show the upload session of FILE."""
    session, _ = _load_session(file)

    click.echo(f"Vault: {session.vault}")
    click.echo(f"File: {session.file_name}")
    click.echo(f"Size: {session.archive_size} ({pretty_size(session.archive_size)})")
    click.echo(f"Part Size: {session.part_size} ({pretty_size(session.part_size)})")
    click.echo(f"Description: {session.description or ''}")
    click.echo(f"Upload ID: {session.upload_id or '(not initiated)'}")
    click.echo(f"Uploaded: {session.uploaded_count}/{session.part_count} parts")
    for index, part in enumerate(session.parts):
        start, end = session.part_range(index)
        mark = "x" if part.uploaded else " "
        click.echo(f"  [{mark}] {index + 1:>5} {start}-{end} {part.tree_hash}")


@multipart.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def upload(ctx: click.Context, file: Path) -> None:
    """Upload the pending parts of FILE and complete the archive."""
    session, session_path = _load_session(file)
    uploader, client = _uploader(ctx, session_path)

    try:
        with client:
            result = uploader.upload(session, file)
    except (TransferError, SessionError, APIError) as e:
        report_error(e)

    click.echo(f"Location: {result.location}")
    click.echo(f"Archive ID: {result.archive_id}")
    click.echo(f"SHA256 Tree Hash: {result.tree_hash}")
    click.echo(
        f"Uploaded {result.parts_uploaded} parts, {result.parts_skipped} already uploaded"
    )


@multipart.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def abort(ctx: click.Context, file: Path) -> None:
    """Abort the upload of FILE and delete its session record."""
    session, session_path = _load_session(file)
    uploader, client = _uploader(ctx, session_path)

    try:
        with client:
            uploader.abort(session)
    except (TransferError, APIError) as e:
        report_error(e)

    if session.upload_id:
        click.echo(f"Aborted upload {session.upload_id}")
    click.echo(f"Removed {session_path}")


@multipart.command(name="list-uploads")
@click.argument("vault")
@click.pass_context
def list_uploads(ctx: click.Context, vault: str) -> None:
    """List in-progress multipart uploads of VAULT."""
    try:
        with create_client(ctx) as client:
            uploads = client.list_multipart_uploads(vault)
    except APIError as e:
        report_error(e)

    for item in uploads:
        click.echo(f"Upload ID: {item.upload_id}")
        click.echo(f"Part Size: {item.part_size} ({pretty_size(item.part_size)})")
        click.echo(f"Archive Description: {item.description or ''}")
        click.echo(f"Creation Date: {item.creation_date}")
        click.echo()
