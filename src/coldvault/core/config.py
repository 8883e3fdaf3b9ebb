"""Shared configuration classes for coldvault.

This module defines the connection settings for the cold-storage service and
the tuning knobs of the transfer engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from coldvault.core.treehash import MAX_PART_SIZE, is_tree_hash_aligned

MIB = 1024 * 1024

DEFAULT_WINDOW_SIZE = 64 * MIB
DEFAULT_PART_SIZE = 16 * MIB

# Retrieval jobs typically take hours; check rarely after the first wait
DEFAULT_INITIAL_POLL_DELAY = 3 * 60 * 60.0  # seconds
DEFAULT_POLL_INTERVAL = 15 * 60.0  # seconds


@dataclass
class VaultConfig:
    """Configuration for connecting to the cold-storage service.

    One instance is built at startup and handed to VaultClient; there is no
    process-wide connection.

    Attributes:
        endpoint_url: Base URL of the service (e.g., "https://vault.example.com").
        token: Bearer token sent with every request.
        account_id: Account the vaults belong to ("-" means the caller's own).
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    endpoint_url: str
    token: str
    account_id: str = "-"
    timeout: float = 60.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize endpoint URL."""
        self.endpoint_url = self.endpoint_url.rstrip("/")
        if not self.account_id:
            self.account_id = "-"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.endpoint_url.startswith("https://")


@dataclass
class TransferConfig:
    """Tuning for retries, polling and chunk sizes.

    Attributes:
        max_retries: Consecutive failures tolerated per retry loop.
        initial_backoff: First sleep between retries, in seconds.
        max_backoff: Upper bound for the retry sleep, in seconds.
        backoff_multiplier: Growth factor of the retry sleep.
        window_size: Byte range requested per download window.
        part_size: Part size for new multipart uploads.
        initial_poll_delay: Wait before the first job status check.
        poll_interval: Wait between job status checks.
        max_wait: Give up on a job after this many seconds (None = never).
    """

    max_retries: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    backoff_multiplier: float = 2.0
    window_size: int = DEFAULT_WINDOW_SIZE
    part_size: int = DEFAULT_PART_SIZE
    initial_poll_delay: float = DEFAULT_INITIAL_POLL_DELAY
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_wait: float | None = None

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not is_tree_hash_aligned(self.window_size):
            raise ValueError("window_size must be 1 MiB times a power of two")
        if not is_tree_hash_aligned(self.part_size) or self.part_size > MAX_PART_SIZE:
            raise ValueError(
                "part_size must be 1 MiB times a power of two, at most 4 GiB"
            )
        if self.max_wait is not None and self.max_wait <= 0:
            raise ValueError("max_wait must be positive")
