"""Chunked transfer engine.

Architecture:
    retrieve an archive: JobPoller -> ChunkedDownloader
    upload an archive:   plan_upload -> UploadSession -> ChunkedUploader

Components:
- **RetryPolicy / RetryContext**: Bounded retries, one counter per loop
- **JobPoller**: Initiates a job and polls until it completes
- **ChunkedDownloader**: Byte-range download with per-window tree hash checks
- **ChunkedUploader**: Sequential, resumable multipart upload

All public symbols are re-exported here.
"""

from coldvault.client.transfer.download import ChunkedDownloader
from coldvault.client.transfer.poller import JobPoller, JobState
from coldvault.client.transfer.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    RETRYABLE_EXCEPTIONS,
    RetryContext,
    RetryDecision,
    RetryPolicy,
    retry_call,
)
from coldvault.client.transfer.types import (
    ChecksumMismatchError,
    CompletionRejectedError,
    DownloadResult,
    IntegrityError,
    JobCancelledError,
    JobFailedError,
    JobTimeoutError,
    LocalResourceError,
    ProgressCallback,
    RetryExhaustedError,
    ServiceError,
    TransferError,
    TransferProgress,
    TransferStage,
    UploadResult,
)
from coldvault.client.transfer.upload import ChunkedUploader

__all__ = [
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "RETRYABLE_EXCEPTIONS",
    "RetryContext",
    "RetryDecision",
    "RetryPolicy",
    "retry_call",
    # Types and errors
    "ChecksumMismatchError",
    "CompletionRejectedError",
    "DownloadResult",
    "IntegrityError",
    "JobCancelledError",
    "JobFailedError",
    "JobTimeoutError",
    "LocalResourceError",
    "ProgressCallback",
    "RetryExhaustedError",
    "ServiceError",
    "TransferError",
    "TransferProgress",
    "TransferStage",
    "UploadResult",
    # Components
    "ChunkedDownloader",
    "ChunkedUploader",
    "JobPoller",
    "JobState",
]
