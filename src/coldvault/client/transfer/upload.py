"""Resumable multipart upload.

This module provides:
- ChunkedUploader: Sends the parts of an UploadSession in order and
  completes the upload
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from coldvault.client.api import AuthenticationError
from coldvault.client.transfer.session import SessionError, UploadSession
from coldvault.client.transfer.retry import RetryPolicy, retry_call
from coldvault.client.transfer.types import (
    CompletionRejectedError,
    LocalResourceError,
    ProgressCallback,
    ServiceError,
    TransferProgress,
    TransferStage,
    UploadResult,
)
from coldvault.core.treehash import TreeHasher, tree_hash_file

if TYPE_CHECKING:
    from coldvault.client.api import ArchiveLocation, VaultClient

logger = logging.getLogger(__name__)


class ChunkedUploader:
    """Uploads a session's parts sequentially, resuming from saved progress.

    The session is saved after the upload ID is obtained and after every
    part, so re-running upload() on the same record skips parts that were
    already accepted.
    """

    def __init__(
        self,
        client: VaultClient,
        policy: RetryPolicy,
        session_path: Path,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            client: Service client.
            policy: Retry policy for service calls.
            session_path: Where the session record is persisted.
            progress_callback: Optional callback after each part.
        """
        self._client = client
        self._policy = policy
        self._session_path = Path(session_path)
        self._progress_callback = progress_callback

    def upload(self, session: UploadSession, source: Path | None = None) -> UploadResult:
        """Upload all pending parts and complete the archive.

        Args:
            session: Session to execute (mutated and saved as parts finish).
            source: Source file; defaults to session.file_name.

        Returns:
            UploadResult with the archive location.

        Raises:
            SessionError: If the source no longer matches the session.
            LocalResourceError: If the source cannot be read.
            RetryExhaustedError: If a service call keeps failing.
            ServiceError: If the service refuses initiation or a part.
            CompletionRejectedError: If the service refuses completion.
        """
        source = Path(source or session.file_name)
        self._check_source(session, source)

        upload_id = session.upload_id
        if upload_id is None:
            upload_id = retry_call(
                self._policy,
                f"initiate multipart upload to {session.vault}",
                lambda: self._client.initiate_multipart_upload(
                    session.vault, session.part_size, session.description
                ),
                stage=TransferStage.INITIATION,
            )
            session.upload_id = upload_id
            session.save(self._session_path)
            logger.info(f"Initiated multipart upload {upload_id}")
        else:
            logger.info(
                f"Resuming multipart upload {upload_id}: "
                f"{session.uploaded_count}/{session.part_count} parts already uploaded"
            )

        skipped = session.uploaded_count
        try:
            with open(source, "rb") as f:
                uploaded = self._upload_parts(session, upload_id, f, source.name)
                tree_hash, size = self._whole_file_tree_hash(f)
        except OSError as e:
            raise LocalResourceError(f"Cannot read {source}: {e}") from e

        if size != session.archive_size:
            raise SessionError(
                f"{source} changed during upload: {size} bytes, "
                f"expected {session.archive_size}"
            )

        location = self._complete(session, upload_id, tree_hash, size)
        logger.info(f"Uploaded {source.name}: {location.location}")

        # A completed session must not be resumed into a second archive
        self._remove_session()

        return UploadResult(
            location=location.location,
            archive_id=location.archive_id,
            tree_hash=tree_hash,
            size=size,
            parts_uploaded=uploaded,
            parts_skipped=skipped,
        )

    def _check_source(self, session: UploadSession, source: Path) -> None:
        try:
            size = source.stat().st_size
        except OSError as e:
            raise LocalResourceError(f"Cannot access {source}: {e}") from e
        if size != session.archive_size:
            raise SessionError(
                f"{source} is {size} bytes but the session was planned for "
                f"{session.archive_size} bytes"
            )

    def _upload_parts(
        self,
        session: UploadSession,
        upload_id: str,
        f: BinaryIO,
        name: str,
    ) -> int:
        """Send every pending part in index order."""
        ctx = self._policy.context(f"upload parts of {name}", TransferStage.UPLOAD)
        sent = 0

        for index in session.pending_parts():
            part = session.parts[index]
            start, end = session.part_range(index)
            f.seek(start)
            data = f.read(end - start + 1)
            if len(data) != end - start + 1:
                raise SessionError(
                    f"Short read for part {index + 1}: {len(data)} bytes, "
                    f"expected {end - start + 1}"
                )

            ctx.run(
                lambda: self._client.upload_part(
                    session.vault, upload_id, start, data, part.tree_hash, part.hash
                )
            )
            session.mark_uploaded(index)
            session.save(self._session_path)
            sent += 1
            logger.info(f"Uploaded part {index + 1}/{session.part_count} ({start}-{end})")

            if self._progress_callback:
                self._progress_callback(TransferProgress(
                    name=name,
                    total_bytes=session.archive_size,
                    bytes_transferred=end + 1,
                    current_unit=index + 1,
                    total_units=session.part_count,
                    operation="upload",
                ))

        return sent

    def _whole_file_tree_hash(self, f: BinaryIO) -> tuple[str, int]:
        f.seek(0)
        return tree_hash_file(f, TreeHasher())

    def _complete(
        self,
        session: UploadSession,
        upload_id: str,
        tree_hash: str,
        size: int,
    ) -> ArchiveLocation:
        """Ask the service to assemble the archive."""
        logger.info(f"Completing upload {upload_id}: {size} bytes, tree hash {tree_hash}")
        try:
            location: ArchiveLocation = retry_call(
                self._policy,
                f"complete multipart upload {upload_id}",
                lambda: self._client.complete_multipart_upload(
                    session.vault, upload_id, tree_hash, size
                ),
                stage=TransferStage.COMPLETION,
            )
        except ServiceError as e:
            if isinstance(e.__cause__, AuthenticationError):
                raise
            # The upload stays open on the service; `multipart abort` cleans it up
            logger.error(f"Service rejected completion of upload {upload_id}: {e.__cause__}")
            raise CompletionRejectedError(
                f"Service rejected completion of upload {upload_id}: {e.__cause__}"
            ) from e
        return location

    def abort(self, session: UploadSession) -> None:
        """Abort the session's multipart upload on the service.

        The session record is deleted afterwards; its parts are void once
        the service discards them.
        """
        upload_id = session.upload_id
        if upload_id is not None:
            self._abort_remote(session.vault, upload_id)
        self._remove_session()

    def _remove_session(self) -> None:
        try:
            self._session_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove session record {self._session_path}: {e}")

    def _abort_remote(self, vault: str, upload_id: str) -> None:
        retry_call(
            self._policy,
            f"abort multipart upload {upload_id}",
            lambda: self._client.abort_multipart_upload(vault, upload_id),
            stage=TransferStage.COMPLETION,
        )
        logger.info(f"Aborted multipart upload {upload_id}")
