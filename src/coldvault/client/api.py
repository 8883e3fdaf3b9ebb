"""HTTP client for the cold-storage service API.

This module provides:
- VaultClient: HTTP client for communicating with the service
- Job operations (initiate, describe, list, fetch output)
- Multipart upload operations (initiate, upload part, complete, abort, list)

Request signing is handled outside this module; the client sends the
configured bearer token as-is.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from coldvault.core.config import VaultConfig
from coldvault.core.types import JobAction

logger = logging.getLogger(__name__)

# Service headers
JOB_ID_HEADER = "x-amz-job-id"
UPLOAD_ID_HEADER = "x-amz-multipart-upload-id"
ARCHIVE_ID_HEADER = "x-amz-archive-id"
TREE_HASH_HEADER = "x-amz-sha256-tree-hash"
CONTENT_HASH_HEADER = "x-amz-content-sha256"
PART_SIZE_HEADER = "x-amz-part-size"
ARCHIVE_SIZE_HEADER = "x-amz-archive-size"
DESCRIPTION_HEADER = "x-amz-archive-description"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


class ServiceUnavailableError(APIError):
    """Server-side or throttling error; safe to retry."""


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    # Python < 3.11 does not accept the "Z" suffix
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class Job:
    """Snapshot of a job as reported by the service."""

    id: str
    action: JobAction
    completed: bool
    creation_date: datetime | None
    status_code: str
    status_message: str | None = None
    completion_date: datetime | None = None
    archive_id: str | None = None
    archive_size: int | None = None
    inventory_size: int | None = None
    tree_hash: str | None = None
    description: str | None = None
    sns_topic: str | None = None
    vault_arn: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        """Create from API response dictionary."""
        return cls(
            id=data["JobId"],
            action=JobAction(data["Action"]),
            completed=bool(data["Completed"]),
            creation_date=_parse_datetime(data.get("CreationDate")),
            status_code=data.get("StatusCode") or "",
            status_message=data.get("StatusMessage"),
            completion_date=_parse_datetime(data.get("CompletionDate")),
            archive_id=data.get("ArchiveId"),
            archive_size=data.get("ArchiveSizeInBytes"),
            inventory_size=data.get("InventorySizeInBytes"),
            tree_hash=data.get("SHA256TreeHash"),
            description=data.get("JobDescription"),
            sns_topic=data.get("SNSTopic"),
            vault_arn=data.get("VaultARN"),
        )

    @property
    def size(self) -> int | None:
        """Size of the retrievable payload, once known."""
        if self.action is JobAction.ARCHIVE_RETRIEVAL:
            return self.archive_size
        return self.inventory_size


@dataclass
class JobList:
    """One page of list_jobs results."""

    jobs: list[Job]
    marker: str | None


@dataclass
class JobOutput:
    """Body of a job output request."""

    data: bytes
    tree_hash: str | None
    content_range: str | None = None

    @property
    def size(self) -> int:
        """Number of bytes received."""
        return len(self.data)


@dataclass
class InventoryArchive:
    """One archive listed in a vault inventory."""

    archive_id: str
    description: str
    creation_date: datetime | None
    size: int
    tree_hash: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventoryArchive:
        """Create from inventory document entry."""
        return cls(
            archive_id=data["ArchiveId"],
            description=data.get("ArchiveDescription", ""),
            creation_date=_parse_datetime(data.get("CreationDate")),
            size=data["Size"],
            tree_hash=data["SHA256TreeHash"],
        )


@dataclass
class Inventory:
    """Vault inventory produced by an inventory-retrieval job."""

    vault_arn: str
    inventory_date: datetime | None
    archives: list[InventoryArchive] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Inventory:
        """Create from inventory document."""
        return cls(
            vault_arn=data.get("VaultARN", ""),
            inventory_date=_parse_datetime(data.get("InventoryDate")),
            archives=[InventoryArchive.from_dict(a) for a in data.get("ArchiveList", [])],
        )


@dataclass
class MultipartUpload:
    """In-progress multipart upload reported by the service."""

    upload_id: str
    part_size: int
    description: str | None
    creation_date: datetime | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MultipartUpload:
        """Create from API response dictionary."""
        return cls(
            upload_id=data["MultipartUploadId"],
            part_size=data["PartSizeInBytes"],
            description=data.get("ArchiveDescription"),
            creation_date=_parse_datetime(data.get("CreationDate")),
        )


@dataclass
class ArchiveLocation:
    """Result of completing a multipart upload."""

    location: str
    archive_id: str | None
    tree_hash: str | None


class VaultClient:
    """HTTP client for the cold-storage service API."""

    def __init__(self, config: VaultConfig) -> None:
        """Initialize the client.

        Args:
            config: Service connection configuration.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.endpoint_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    @property
    def config(self) -> VaultConfig:
        """Connection configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> VaultClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _vault_path(self, vault: str) -> str:
        return f"/{self._config.account_id}/vaults/{vault}"

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code < 400:
            return response
        detail = _error_detail(response)
        if response.status_code in (401, 403):
            raise AuthenticationError(detail or "Invalid or expired token", response.status_code)
        if response.status_code == 404:
            raise NotFoundError(detail or "Resource not found", 404)
        if response.status_code == 429 or response.status_code >= 500:
            raise ServiceUnavailableError(
                detail or "Service unavailable", response.status_code
            )
        raise APIError(detail or "Unknown error", response.status_code)

    # === Job operations ===

    def initiate_inventory_job(
        self,
        vault: str,
        sns_topic: str | None = None,
        description: str | None = None,
    ) -> str:
        """Start an inventory-retrieval job.

        Returns:
            Job ID.
        """
        return self._initiate_job(vault, JobAction.INVENTORY_RETRIEVAL, None, sns_topic, description)

    def initiate_retrieval_job(
        self,
        vault: str,
        archive_id: str,
        sns_topic: str | None = None,
        description: str | None = None,
    ) -> str:
        """Start an archive-retrieval job.

        Returns:
            Job ID.
        """
        return self._initiate_job(
            vault, JobAction.ARCHIVE_RETRIEVAL, archive_id, sns_topic, description
        )

    def _initiate_job(
        self,
        vault: str,
        action: JobAction,
        archive_id: str | None,
        sns_topic: str | None,
        description: str | None,
    ) -> str:
        body: dict[str, str] = {"Type": action.request_type}
        if archive_id:
            body["ArchiveId"] = archive_id
        if sns_topic:
            body["SNSTopic"] = sns_topic
        if description:
            body["Description"] = description

        response = self._handle_response(
            self._client.post(f"{self._vault_path(vault)}/jobs", json=body)
        )
        job_id = response.headers.get(JOB_ID_HEADER)
        if not job_id:
            raise APIError("Missing job id in response", response.status_code)
        return job_id

    def describe_job(self, vault: str, job_id: str) -> Job:
        """Get the current snapshot of a job.

        Raises:
            NotFoundError: If the job does not exist (or has expired).
        """
        response = self._handle_response(
            self._client.get(f"{self._vault_path(vault)}/jobs/{job_id}")
        )
        return Job.from_dict(response.json())

    def list_jobs(
        self,
        vault: str,
        completed: bool | None = None,
        status_code: str | None = None,
        limit: int | None = None,
        marker: str | None = None,
    ) -> JobList:
        """List jobs in a vault.

        Args:
            vault: Vault name.
            completed: Only completed (True) or pending (False) jobs.
            status_code: Filter by status code.
            limit: Maximum number of jobs per page.
            marker: Pagination marker from a previous page.

        Returns:
            JobList with the jobs and the marker of the next page.
        """
        params: dict[str, str] = {}
        if completed is not None:
            params["completed"] = "true" if completed else "false"
        if status_code:
            params["statuscode"] = status_code
        if limit:
            params["limit"] = str(limit)
        if marker:
            params["marker"] = marker

        response = self._handle_response(
            self._client.get(f"{self._vault_path(vault)}/jobs", params=params)
        )
        data = response.json()
        return JobList(
            jobs=[Job.from_dict(j) for j in data.get("JobList", [])],
            marker=data.get("Marker"),
        )

    def get_job_output(
        self,
        vault: str,
        job_id: str,
        start: int | None = None,
        end: int | None = None,
    ) -> JobOutput:
        """Fetch the output of a completed job.

        Omitting both range bounds requests the whole object.

        Args:
            vault: Vault name.
            job_id: Completed job ID.
            start: First byte offset (inclusive).
            end: Last byte offset (inclusive).

        Returns:
            JobOutput with the bytes and the service's tree hash for them.
        """
        headers = {}
        if start is not None or end is not None:
            headers["Range"] = f"bytes={start or 0}-{'' if end is None else end}"

        response = self._handle_response(
            self._client.get(
                f"{self._vault_path(vault)}/jobs/{job_id}/output",
                headers=headers,
            )
        )
        return JobOutput(
            data=response.content,
            tree_hash=response.headers.get(TREE_HASH_HEADER),
            content_range=response.headers.get("Content-Range"),
        )

    def get_inventory(self, vault: str, job_id: str) -> Inventory:
        """Fetch and parse the output of a completed inventory job."""
        output = self.get_job_output(vault, job_id)
        return Inventory.from_dict(json.loads(output.data))

    # === Multipart upload operations ===

    def initiate_multipart_upload(
        self,
        vault: str,
        part_size: int,
        description: str | None = None,
    ) -> str:
        """Start a multipart upload.

        Returns:
            Upload ID.
        """
        headers = {PART_SIZE_HEADER: str(part_size)}
        if description:
            headers[DESCRIPTION_HEADER] = description

        response = self._handle_response(
            self._client.post(
                f"{self._vault_path(vault)}/multipart-uploads",
                headers=headers,
            )
        )
        upload_id = response.headers.get(UPLOAD_ID_HEADER)
        if not upload_id:
            raise APIError("Missing upload id in response", response.status_code)
        return upload_id

    def upload_part(
        self,
        vault: str,
        upload_id: str,
        offset: int,
        data: bytes,
        tree_hash: str,
        content_hash: str,
    ) -> None:
        """Upload one part at the given byte offset.

        Args:
            vault: Vault name.
            upload_id: Multipart upload ID.
            offset: Byte offset of the part in the archive.
            data: Part bytes.
            tree_hash: Tree hash of the part.
            content_hash: Linear SHA-256 of the part.
        """
        end = offset + len(data) - 1
        self._handle_response(
            self._client.put(
                f"{self._vault_path(vault)}/multipart-uploads/{upload_id}",
                content=data,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Range": f"bytes {offset}-{end}/*",
                    TREE_HASH_HEADER: tree_hash,
                    CONTENT_HASH_HEADER: content_hash,
                },
            )
        )

    def complete_multipart_upload(
        self,
        vault: str,
        upload_id: str,
        tree_hash: str,
        archive_size: int,
    ) -> ArchiveLocation:
        """Finish a multipart upload.

        The service checks the tree hash and size against the parts it
        received and rejects the request if they disagree.

        Returns:
            ArchiveLocation of the new archive.
        """
        response = self._handle_response(
            self._client.post(
                f"{self._vault_path(vault)}/multipart-uploads/{upload_id}",
                headers={
                    TREE_HASH_HEADER: tree_hash,
                    ARCHIVE_SIZE_HEADER: str(archive_size),
                },
            )
        )
        return ArchiveLocation(
            location=response.headers.get("Location", ""),
            archive_id=response.headers.get(ARCHIVE_ID_HEADER),
            tree_hash=response.headers.get(TREE_HASH_HEADER),
        )

    def abort_multipart_upload(self, vault: str, upload_id: str) -> None:
        """Abort a multipart upload and discard its parts."""
        self._handle_response(
            self._client.delete(
                f"{self._vault_path(vault)}/multipart-uploads/{upload_id}"
            )
        )

    def list_multipart_uploads(self, vault: str) -> list[MultipartUpload]:
        """List in-progress multipart uploads of a vault."""
        response = self._handle_response(
            self._client.get(f"{self._vault_path(vault)}/multipart-uploads")
        )
        return [
            MultipartUpload.from_dict(u)
            for u in response.json().get("UploadsList", [])
        ]


def _error_detail(response: httpx.Response) -> str | None:
    """Extract the service's error message, if any."""
    try:
        data = response.json()
    except ValueError:
        return response.text or None
    if isinstance(data, dict):
        return data.get("message") or data.get("detail")
    return None
