"""Verified chunked download of retrieval job output.

This module provides:
- ChunkedDownloader: Fetches a completed job's archive window by window

Each window's bytes are tree-hashed and compared against the hash the
service sends with them before they are appended to disk. The assembled
file is then re-hashed as a whole and compared against the job's archive
tree hash. Data goes to "<destination>.part" and is only renamed to the
destination after that final check passes.
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from coldvault.client.transfer.retry import RetryPolicy, retry_call
from coldvault.client.transfer.types import (
    ChecksumMismatchError,
    DownloadResult,
    IntegrityError,
    LocalResourceError,
    ProgressCallback,
    TransferProgress,
    TransferStage,
)
from coldvault.core.config import DEFAULT_WINDOW_SIZE
from coldvault.core.treehash import TreeHasher, is_tree_hash_aligned, tree_hash_file
from coldvault.core.types import JobAction

if TYPE_CHECKING:
    from coldvault.client.api import Job, JobOutput, VaultClient

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"


class ChunkedDownloader:
    """Downloads job output in bounded windows with tree hash checks."""

    def __init__(
        self,
        client: VaultClient,
        vault: str,
        policy: RetryPolicy,
        window_size: int = DEFAULT_WINDOW_SIZE,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            client: Service client.
            vault: Vault the job belongs to.
            policy: Retry policy for window fetches.
            window_size: Bytes requested per window (1 MiB times a power of
                two, so every window starts on a tree boundary).
            progress_callback: Optional callback after each committed window.
        """
        if not is_tree_hash_aligned(window_size):
            raise ValueError("window_size must be 1 MiB times a power of two")
        self._client = client
        self._vault = vault
        self._policy = policy
        self._window_size = window_size
        self._progress_callback = progress_callback
        self._hasher = TreeHasher()

    def window_ranges(self, size: int) -> list[tuple[int, int]]:
        """Inclusive byte ranges requested for an archive of the given size."""
        return [
            (start, min(start + self._window_size, size) - 1)
            for start in range(0, size, self._window_size)
        ]

    def download(self, job: Job, destination: Path) -> DownloadResult:
        """Download and verify a completed archive-retrieval job.

        Args:
            job: Completed job snapshot with archive size and tree hash.
            destination: Final path of the archive.

        Returns:
            DownloadResult describing the verified file.

        Raises:
            ValueError: If the job is not a completed archive retrieval.
            RetryExhaustedError: If a window keeps failing.
            ServiceError: If the service refuses a window request.
            LocalResourceError: If the local file cannot be written.
            IntegrityError: If the assembled file fails verification.
        """
        if job.action is not JobAction.ARCHIVE_RETRIEVAL:
            raise ValueError(f"Job {job.id} is not an archive retrieval")
        if not job.completed or job.archive_size is None or not job.tree_hash:
            raise ValueError(f"Job {job.id} has not completed")

        size = job.archive_size
        destination = Path(destination)
        tmp_path = destination.with_name(destination.name + PART_SUFFIX)

        logger.info(
            f"Downloading job {job.id} to {destination}: {size} bytes in "
            f"{len(self.window_ranges(size))} windows of {self._window_size} bytes"
        )

        sink = self._open_sink(tmp_path)
        try:
            with sink:
                windows = self._download_windows(job, size, sink)
                self._verify_whole(job, sink)
        except Exception:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise

        # The verified .part file is kept if only the rename fails
        try:
            tmp_path.replace(destination)
        except OSError as e:
            raise LocalResourceError(
                f"Cannot move verified archive {tmp_path} to {destination}: {e}"
            ) from e

        logger.info(f"Downloaded and verified {destination} ({size} bytes)")

        return DownloadResult(
            job_id=job.id,
            local_path=destination,
            size=size,
            tree_hash=job.tree_hash,
            windows=windows,
        )

    def _open_sink(self, tmp_path: Path) -> BinaryIO:
        """Create a fresh, empty file opened for appending."""
        try:
            tmp_path.parent.mkdir(parents=True, exist_ok=True)
            if tmp_path.exists():
                tmp_path.unlink()
            return open(tmp_path, "a+b")
        except OSError as e:
            raise LocalResourceError(f"Cannot create {tmp_path}: {e}") from e

    def _download_windows(self, job: Job, size: int, sink: BinaryIO) -> int:
        """Fetch, verify and append windows until the whole archive is on disk."""
        ctx = self._policy.context(f"download job {job.id}", TransferStage.FETCH)
        n = 0
        windows = 0

        while n < size:
            start = n
            end = min(n + self._window_size, size) - 1
            logger.debug(f"Downloading bytes {start} to {end}")

            output = ctx.run(lambda: self._fetch_window(job.id, start, end))

            try:
                sink.write(output.data)
                sink.flush()
            except OSError as e:
                raise LocalResourceError(f"Cannot write to {sink.name}: {e}") from e

            n += output.size
            windows += 1
            logger.info(f"Committed bytes {start}-{n - 1} of {size}")

            if self._progress_callback:
                self._progress_callback(TransferProgress(
                    name=job.id,
                    total_bytes=size,
                    bytes_transferred=n,
                    current_unit=windows,
                    total_units=len(self.window_ranges(size)),
                    operation="download",
                ))

        return windows

    def _fetch_window(self, job_id: str, start: int, end: int) -> JobOutput:
        """Fetch one window and check it against the service's tree hash.

        Raises:
            ChecksumMismatchError: If the hashes disagree (retryable).
        """
        output = self._client.get_job_output(self._vault, job_id, start, end)
        if output.size == 0:
            raise ChecksumMismatchError(output.tree_hash, "<empty>", start, end)

        self._hasher.reset()
        self._hasher.write(output.data)
        self._hasher.close()
        actual = self._hasher.tree_hash()
        self._hasher.reset()

        if output.tree_hash != actual:
            raise ChecksumMismatchError(output.tree_hash, actual, start, end)
        return output

    def _verify_whole(self, job: Job, sink: BinaryIO) -> None:
        """Re-hash the assembled file and compare with the job's tree hash."""
        logger.info("Download complete, checking tree hash of the whole archive")
        try:
            sink.seek(0)
            actual, length = tree_hash_file(sink, self._hasher)
        except OSError as e:
            raise LocalResourceError(f"Cannot read back {sink.name}: {e}") from e
        finally:
            self._hasher.reset()

        if length != job.archive_size or actual != job.tree_hash:
            logger.error(
                f"Whole archive tree hash mismatch: wanted {job.tree_hash} "
                f"({job.archive_size} bytes), got {actual} ({length} bytes)"
            )
            raise IntegrityError(
                f"Downloaded archive does not match job {job.id}: "
                f"expected tree hash {job.tree_hash}, got {actual}",
                TransferStage.VERIFICATION,
            )

    def fetch_job_output(self, job: Job, destination: Path) -> Path:
        """Download a whole job output in a single request.

        Used for inventories and small archives. Archive output is checked
        against the job's tree hash when the service provides one.

        Raises:
            IntegrityError: If the output does not match the job's tree hash.
            LocalResourceError: If the destination cannot be written.
        """
        output: JobOutput = retry_call(
            self._policy,
            f"get output of job {job.id}",
            lambda: self._client.get_job_output(self._vault, job.id),
        )

        if job.action is JobAction.ARCHIVE_RETRIEVAL and job.tree_hash:
            expected = job.tree_hash
        else:
            expected = output.tree_hash
        if expected:
            self._hasher.reset()
            self._hasher.write(output.data)
            self._hasher.close()
            actual = self._hasher.tree_hash()
            self._hasher.reset()
            if actual != expected:
                raise IntegrityError(
                    f"Output of job {job.id} does not match tree hash {expected}",
                    TransferStage.VERIFICATION,
                )

        destination = Path(destination)
        try:
            destination.write_bytes(output.data)
        except OSError as e:
            raise LocalResourceError(f"Cannot write {destination}: {e}") from e
        return destination
