"""Bounded retry with exponential backoff.

This module provides:
- RetryPolicy: Process-wide retry settings and the retryable error set
- RetryContext: Consecutive-failure counter for one retry-protected loop
- retry_call: Run a single call under a fresh RetryContext

Each loop (job polling, the download loop, the upload loop) owns its own
RetryContext so that failures of unrelated operations never share a budget.
Errors outside the retryable set are not retried and do not count. Service
refusals among them are raised as ServiceError carrying the loop's stage.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

import httpx

from coldvault.client.api import APIError, ServiceUnavailableError
from coldvault.client.transfer.types import (
    ChecksumMismatchError,
    RetryExhaustedError,
    ServiceError,
    TransferStage,
)
from coldvault.core.config import TransferConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Failures that are safe to re-attempt verbatim
RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TransportError,
    ServiceUnavailableError,
    ChecksumMismatchError,
)


class RetryDecision(Enum):
    """Outcome of recording a failure."""

    RETRY = "retry"
    ABORT = "abort"


class RetryPolicy:
    """Retry ceiling and backoff shared by every transfer component."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        retryable_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the policy.

        Args:
            max_retries: Consecutive failures tolerated before aborting.
            initial_backoff: Initial backoff time in seconds.
            max_backoff: Maximum backoff time in seconds.
            backoff_multiplier: Multiplier for each retry.
            retryable_exceptions: Tuple of exception types to retry on.
            sleep: Sleep function (injectable for tests).
        """
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier
        self.retryable_exceptions = retryable_exceptions
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: TransferConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> RetryPolicy:
        """Build a policy from transfer configuration."""
        return cls(
            max_retries=config.max_retries,
            initial_backoff=config.initial_backoff,
            max_backoff=config.max_backoff,
            backoff_multiplier=config.backoff_multiplier,
            sleep=sleep,
        )

    def is_retryable(self, error: BaseException) -> bool:
        """Check if an error may be retried verbatim."""
        return isinstance(error, self.retryable_exceptions)

    def context(
        self,
        operation: str,
        stage: TransferStage = TransferStage.FETCH,
    ) -> RetryContext:
        """Create a fresh failure counter for one retry-protected loop.

        Args:
            operation: Name used in log messages and errors.
            stage: Stage reported if the retries run out.
        """
        return RetryContext(self, operation, stage)

    def backoff_for(self, failures: int) -> float:
        """Sleep duration before the next attempt after N failures."""
        backoff = self.initial_backoff * (self.backoff_multiplier ** max(failures - 1, 0))
        return min(backoff, self.max_backoff)

    def sleep(self, seconds: float) -> None:
        """Sleep using the configured sleep function."""
        if seconds > 0:
            self._sleep(seconds)


class RetryContext:
    """Consecutive-failure counter for one logical operation."""

    def __init__(
        self,
        policy: RetryPolicy,
        operation: str,
        stage: TransferStage,
    ) -> None:
        self._policy = policy
        self.operation = operation
        self.stage = stage
        self.failures = 0

    @property
    def exhausted(self) -> bool:
        """True once the failure count is above the ceiling."""
        return self.failures > self._policy.max_retries

    def record_success(self) -> None:
        """Reset the counter after a successful attempt."""
        if self.failures:
            logger.debug(f"{self.operation}: succeeded after {self.failures} failures")
        self.failures = 0

    def record_failure(self, error: BaseException) -> RetryDecision:
        """Count a failure and decide whether to try again.

        Args:
            error: The failure that just happened.

        Returns:
            RETRY while failures <= max_retries, ABORT afterwards.
        """
        self.failures += 1
        limit = self._policy.max_retries
        if self.failures > limit:
            logger.error(
                f"{self.operation}: all {limit} retries failed, last error: {error}"
            )
            return RetryDecision.ABORT

        logger.warning(
            f"{self.operation}: attempt {self.failures}/{limit + 1} failed: {error}"
        )
        return RetryDecision.RETRY

    def run(self, func: Callable[[], T]) -> T:
        """Call func until it succeeds or the retries run out.

        Non-retryable exceptions propagate on the first occurrence.

        Raises:
            ServiceError: If the service refuses the call with a non-retryable
                error. The APIError is chained as __cause__.
            RetryExhaustedError: If func fails more than max_retries times
                in a row. The last failure is chained as __cause__.
        """
        while True:
            try:
                result = func()
            except self._policy.retryable_exceptions as e:
                if self.record_failure(e) is RetryDecision.ABORT:
                    raise RetryExhaustedError(
                        self.operation, self.failures, self.stage
                    ) from e
                backoff = self._policy.backoff_for(self.failures)
                if backoff > 0:
                    logger.info(f"{self.operation}: retrying in {backoff:.1f}s...")
                self._policy.sleep(backoff)
                continue
            except APIError as e:
                logger.error(f"{self.operation}: service refused request: {e}")
                raise ServiceError(
                    self.operation, str(e), e.status_code, self.stage
                ) from e
            self.record_success()
            return result


def retry_call(
    policy: RetryPolicy,
    operation: str,
    func: Callable[[], Any],
    stage: TransferStage = TransferStage.FETCH,
) -> Any:
    """Run one call under its own retry budget."""
    return policy.context(operation, stage).run(func)
