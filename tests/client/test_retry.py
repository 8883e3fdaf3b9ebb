"""Tests for the retry policy."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from coldvault.client.api import NotFoundError, ServiceUnavailableError
from coldvault.client.transfer.retry import RetryDecision, RetryPolicy, retry_call
from coldvault.client.transfer.types import (
    ChecksumMismatchError,
    RetryExhaustedError,
    ServiceError,
    TransferStage,
)
from coldvault.core.config import TransferConfig


@pytest.fixture
def sleeps() -> list[float]:
    """Record sleep durations instead of sleeping."""
    return []


@pytest.fixture
def policy(sleeps: list[float]) -> RetryPolicy:
    """A policy with a ceiling of 3 that never really sleeps."""
    return RetryPolicy(max_retries=3, sleep=sleeps.append)


class TestRetryContext:
    """Tests for RetryContext bookkeeping."""

    def test_abort_on_ceiling_plus_one(self, policy: RetryPolicy) -> None:
        """The decision flips to ABORT on the (ceiling + 1)-th failure."""
        ctx = policy.context("op")
        error = ServiceUnavailableError("busy", 503)

        decisions = [ctx.record_failure(error) for _ in range(4)]

        assert decisions == [
            RetryDecision.RETRY,
            RetryDecision.RETRY,
            RetryDecision.RETRY,
            RetryDecision.ABORT,
        ]
        assert ctx.exhausted

    def test_success_resets_counter(self, policy: RetryPolicy) -> None:
        """Failures must be consecutive to exhaust the budget."""
        ctx = policy.context("op")
        error = ServiceUnavailableError("busy", 503)

        for _ in range(3):
            assert ctx.record_failure(error) is RetryDecision.RETRY
        ctx.record_success()
        assert ctx.failures == 0
        for _ in range(3):
            assert ctx.record_failure(error) is RetryDecision.RETRY

    def test_zero_ceiling_aborts_immediately(self) -> None:
        """With no retries allowed, the first failure aborts."""
        ctx = RetryPolicy(max_retries=0).context("op")

        assert ctx.record_failure(ValueError("x")) is RetryDecision.ABORT

    def test_contexts_are_independent(self, policy: RetryPolicy) -> None:
        """Each loop gets its own counter."""
        first = policy.context("first")
        second = policy.context("second")
        first.record_failure(ValueError("x"))

        assert first.failures == 1
        assert second.failures == 0


class TestRun:
    """Tests for RetryContext.run and retry_call."""

    def test_returns_first_success(self, policy: RetryPolicy, sleeps: list[float]) -> None:
        """Should return immediately on success."""
        func = MagicMock(return_value="ok")

        assert policy.context("op").run(func) == "ok"
        assert func.call_count == 1
        assert sleeps == []

    def test_retries_then_succeeds(self, policy: RetryPolicy, sleeps: list[float]) -> None:
        """Should retry retryable failures with exponential backoff."""
        func = MagicMock(side_effect=[
            httpx.ConnectError("down"),
            ServiceUnavailableError("busy", 503),
            "ok",
        ])

        assert policy.context("op").run(func) == "ok"
        assert func.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_exhaustion_raises_with_cause(self, policy: RetryPolicy) -> None:
        """Should raise RetryExhaustedError after ceiling + 1 attempts."""
        last = ChecksumMismatchError("aa", "bb", 0, 9)
        func = MagicMock(side_effect=[
            ServiceUnavailableError("busy", 503),
            ServiceUnavailableError("busy", 503),
            ServiceUnavailableError("busy", 503),
            last,
        ])

        with pytest.raises(RetryExhaustedError) as exc_info:
            policy.context("download", TransferStage.FETCH).run(func)

        assert func.call_count == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.stage is TransferStage.FETCH
        assert exc_info.value.__cause__ is last

    def test_service_refusal_carries_stage(self, policy: RetryPolicy) -> None:
        """Non-retryable service errors are not counted and report the stage."""
        ctx = policy.context("initiate upload", TransferStage.INITIATION)
        refusal = NotFoundError("gone", 404)
        func = MagicMock(side_effect=refusal)

        with pytest.raises(ServiceError) as exc_info:
            ctx.run(func)

        assert func.call_count == 1
        assert ctx.failures == 0
        assert exc_info.value.stage is TransferStage.INITIATION
        assert exc_info.value.status_code == 404
        assert exc_info.value.__cause__ is refusal
        assert "initiate upload" in str(exc_info.value)

    def test_other_errors_propagate(self, policy: RetryPolicy) -> None:
        """Errors that are not service errors propagate unchanged."""
        func = MagicMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            policy.context("op").run(func)

        assert func.call_count == 1

    def test_backoff_is_capped(self, sleeps: list[float]) -> None:
        """Backoff grows geometrically up to max_backoff."""
        policy = RetryPolicy(
            max_retries=5, initial_backoff=1.0, max_backoff=5.0, sleep=sleeps.append
        )
        func = MagicMock(side_effect=[httpx.ReadTimeout("slow")] * 5 + ["ok"])

        policy.context("op").run(func)

        assert sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_retry_call_uses_stage(self) -> None:
        """retry_call reports the given stage on exhaustion."""
        policy = RetryPolicy(max_retries=0, sleep=lambda s: None)

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_call(
                policy,
                "initiate",
                MagicMock(side_effect=httpx.ConnectError("down")),
                stage=TransferStage.INITIATION,
            )

        assert exc_info.value.stage is TransferStage.INITIATION


class TestFromConfig:
    """Tests for RetryPolicy.from_config."""

    def test_from_config(self) -> None:
        """Should copy the retry settings."""
        config = TransferConfig(max_retries=7, initial_backoff=0.5, max_backoff=9.0)

        policy = RetryPolicy.from_config(config)

        assert policy.max_retries == 7
        assert policy.initial_backoff == 0.5
        assert policy.max_backoff == 9.0
