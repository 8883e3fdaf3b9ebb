"""Shared types and dataclasses for transfer operations.

This module provides:
- TransferStage: Which step of a workflow failed
- TransferError and subclasses: Classified failures, ServiceError wrapping
  service refusals with the stage they happened in
- TransferProgress: Progress tracking dataclass
- UploadResult, DownloadResult: Operation result dataclasses
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class TransferStage(str, Enum):
    """Workflow stage reported with every failure."""

    INITIATION = "initiation"
    POLLING = "polling"
    FETCH = "fetch"
    VERIFICATION = "verification"
    UPLOAD = "upload"
    COMPLETION = "completion"
    LOCAL = "local"


class TransferError(Exception):
    """Base exception for transfer errors.

    Attributes:
        stage: Stage of the workflow that failed.
    """

    def __init__(self, message: str, stage: TransferStage) -> None:
        super().__init__(message)
        self.stage = stage


class RetryExhaustedError(TransferError):
    """A retryable failure happened more often than the retry ceiling allows.

    Attributes:
        operation: Name of the retried operation.
        attempts: Number of consecutive failures.
    """

    def __init__(
        self,
        operation: str,
        attempts: int,
        stage: TransferStage,
    ) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation}: giving up after {attempts} consecutive failures", stage
        )


class ServiceError(TransferError):
    """The service refused a request with an error that is not retried.

    Attributes:
        operation: Name of the refused operation.
        status_code: HTTP status returned by the service, if any.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: int | None,
        stage: TransferStage,
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        status = f" [{status_code}]" if status_code else ""
        super().__init__(f"{operation}: service error{status}: {message}", stage)


class ChecksumMismatchError(TransferError):
    """A downloaded window's tree hash differs from the service's value.

    Retryable: the same byte range is fetched again.
    """

    def __init__(self, expected: str | None, actual: str, start: int, end: int) -> None:
        self.expected = expected
        self.actual = actual
        self.start = start
        self.end = end
        super().__init__(
            f"Tree hash mismatch for bytes {start}-{end}: "
            f"wanted {expected}, got {actual}",
            TransferStage.FETCH,
        )


class IntegrityError(TransferError):
    """The assembled archive does not match the expected tree hash."""


class LocalResourceError(TransferError):
    """A local file could not be created, read or written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, TransferStage.LOCAL)


class CompletionRejectedError(TransferError):
    """The service refused to complete a multipart upload."""

    def __init__(self, message: str) -> None:
        super().__init__(message, TransferStage.COMPLETION)


class JobFailedError(TransferError):
    """The service reported that a job failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, TransferStage.POLLING)


class JobTimeoutError(TransferError):
    """A job did not complete within the configured maximum wait."""

    def __init__(self, message: str) -> None:
        super().__init__(message, TransferStage.POLLING)


class JobCancelledError(TransferError):
    """Waiting for a job was cancelled."""

    def __init__(self, message: str) -> None:
        super().__init__(message, TransferStage.POLLING)


@dataclass
class TransferProgress:
    """Progress information for transfer operations."""

    name: str
    total_bytes: int
    bytes_transferred: int
    current_unit: int
    total_units: int
    operation: str  # "hash", "upload" or "download"

    @property
    def percent(self) -> float:
        """Get progress percentage."""
        if self.total_bytes == 0:
            return 100.0
        return (self.bytes_transferred / self.total_bytes) * 100


# Type alias for progress callback
ProgressCallback = Callable[[TransferProgress], None]


@dataclass
class UploadResult:
    """Result of a multipart upload."""

    location: str
    archive_id: str | None
    tree_hash: str
    size: int
    parts_uploaded: int
    parts_skipped: int


@dataclass
class DownloadResult:
    """Result of a verified archive download."""

    job_id: str
    local_path: Path
    size: int
    tree_hash: str
    windows: int
