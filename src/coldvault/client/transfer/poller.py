"""Job initiation and completion polling.

This module provides:
- JobState: Local view of a job's lifecycle
- JobPoller: Starts a retrieval/inventory job and waits for it to complete

State machine:
    INITIATED -> PENDING -> COMPLETED
                        \\-> FAILED

Waits between polls are taken on a threading.Event, so another thread can
cancel a wait that would otherwise last hours.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum, auto
from typing import TYPE_CHECKING

from coldvault.client.transfer.retry import RetryPolicy, retry_call
from coldvault.client.transfer.types import (
    JobCancelledError,
    JobFailedError,
    JobTimeoutError,
    TransferError,
    TransferStage,
)
from coldvault.core.config import DEFAULT_INITIAL_POLL_DELAY, DEFAULT_POLL_INTERVAL
from coldvault.core.types import JobStatus

if TYPE_CHECKING:
    from coldvault.client.api import Job, VaultClient

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Lifecycle of a job as seen by the poller."""

    IDLE = auto()
    INITIATED = auto()
    PENDING = auto()
    COMPLETED = auto()
    FAILED = auto()


class JobPoller:
    """Starts a job and polls the service until it completes."""

    def __init__(
        self,
        client: VaultClient,
        vault: str,
        policy: RetryPolicy,
        initial_delay: float = DEFAULT_INITIAL_POLL_DELAY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float | None = None,
        cancel_event: threading.Event | None = None,
        on_poll: Callable[[Job], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the poller.

        Args:
            client: Service client.
            vault: Vault the job runs in.
            policy: Retry policy for initiation and status calls.
            initial_delay: Seconds to wait before the first status check.
            poll_interval: Seconds between status checks.
            max_wait: Give up after this many seconds (None = no limit).
            cancel_event: Set from another thread to stop waiting.
            on_poll: Optional callback with every job snapshot received.
            clock: Monotonic clock (injectable for tests).
        """
        self._client = client
        self._vault = vault
        self._policy = policy
        self._initial_delay = initial_delay
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._cancel_event = cancel_event or threading.Event()
        self._on_poll = on_poll
        self._clock = clock
        self._state = JobState.IDLE
        self._job: Job | None = None

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def job(self) -> Job | None:
        """Last snapshot received from the service."""
        return self._job

    def cancel(self) -> None:
        """Stop an in-progress wait."""
        self._cancel_event.set()

    def initiate_retrieval(
        self,
        archive_id: str,
        sns_topic: str | None = None,
        description: str | None = None,
    ) -> str:
        """Start an archive-retrieval job.

        Returns:
            Job ID.
        """
        job_id: str = retry_call(
            self._policy,
            "initiate retrieval job",
            lambda: self._client.initiate_retrieval_job(
                self._vault, archive_id, sns_topic, description
            ),
            stage=TransferStage.INITIATION,
        )
        self._state = JobState.INITIATED
        logger.info(f"Initiated retrieval job {job_id} for archive {archive_id}")
        return job_id

    def initiate_inventory(
        self,
        sns_topic: str | None = None,
        description: str | None = None,
    ) -> str:
        """Start an inventory-retrieval job.

        Returns:
            Job ID.
        """
        job_id: str = retry_call(
            self._policy,
            "initiate inventory job",
            lambda: self._client.initiate_inventory_job(
                self._vault, sns_topic, description
            ),
            stage=TransferStage.INITIATION,
        )
        self._state = JobState.INITIATED
        logger.info(f"Initiated inventory job {job_id} for vault {self._vault}")
        return job_id

    def wait(self, job_id: str) -> Job:
        """Poll until the job completes.

        Args:
            job_id: Job to wait for.

        Returns:
            Snapshot of the completed job.

        Raises:
            JobFailedError: If the service reports the job as failed.
            JobTimeoutError: If max_wait elapses first.
            JobCancelledError: If cancel() is called while waiting.
            RetryExhaustedError: If status checks keep failing.
            ServiceError: If the service refuses a status check.
        """
        self._state = JobState.PENDING
        deadline = None if self._max_wait is None else self._clock() + self._max_wait
        ctx = self._policy.context(f"describe job {job_id}", TransferStage.POLLING)

        try:
            self._sleep(self._initial_delay, deadline, job_id)
            while True:
                job = ctx.run(lambda: self._client.describe_job(self._vault, job_id))
                self._job = job
                if self._on_poll:
                    self._on_poll(job)

                if job.completed:
                    if job.status_code == JobStatus.FAILED.value:
                        raise JobFailedError(
                            f"Job {job_id} failed: {job.status_message or 'no message'}"
                        )
                    self._state = JobState.COMPLETED
                    logger.info(
                        f"Job {job_id} completed: size={job.size}, "
                        f"tree hash={job.tree_hash}"
                    )
                    return job

                logger.info(f"Job {job_id} not yet completed ({job.status_code})")
                self._sleep(self._poll_interval, deadline, job_id)
        except TransferError:
            self._state = JobState.FAILED
            raise

    def _sleep(self, seconds: float, deadline: float | None, job_id: str) -> None:
        """Wait, honouring cancellation and the overall deadline."""
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise JobTimeoutError(
                    f"Job {job_id} did not complete within {self._max_wait:.0f}s"
                )
            seconds = min(seconds, remaining)

        if seconds > 0:
            logger.debug(f"Waiting {seconds:.0f}s before checking job {job_id}")
        if self._cancel_event.wait(seconds):
            raise JobCancelledError(f"Waiting for job {job_id} was cancelled")
