"""Shared types for coldvault.

This module defines enums used by the client, the transfer engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class JobAction(str, Enum):
    """Kind of asynchronous job run by the service."""

    ARCHIVE_RETRIEVAL = "ArchiveRetrieval"
    INVENTORY_RETRIEVAL = "InventoryRetrieval"

    @property
    def request_type(self) -> str:
        """Value of the "Type" field when initiating this kind of job."""
        if self is JobAction.ARCHIVE_RETRIEVAL:
            return "archive-retrieval"
        return "inventory-retrieval"


class JobStatus(str, Enum):
    """Status code reported by the service for a job."""

    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
