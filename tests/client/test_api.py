"""Tests for the coldvault HTTP client."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from coldvault.client.api import (
    APIError,
    AuthenticationError,
    Inventory,
    Job,
    NotFoundError,
    ServiceUnavailableError,
    VaultClient,
)
from coldvault.core.config import VaultConfig
from coldvault.core.types import JobAction

BASE = "http://test/-/vaults/photos"


def make_config(endpoint_url: str = "http://test", token: str = "token123") -> VaultConfig:
    """Create a VaultConfig for testing."""
    return VaultConfig(endpoint_url=endpoint_url, token=token)


def job_dict(**overrides: object) -> dict[str, object]:
    """A completed archive-retrieval job as returned by the service."""
    data: dict[str, object] = {
        "JobId": "job-1",
        "Action": "ArchiveRetrieval",
        "ArchiveId": "archive-1",
        "ArchiveSizeInBytes": 3145728,
        "Completed": True,
        "CompletionDate": "2025-01-02T15:30:00Z",
        "CreationDate": "2025-01-02T10:00:00Z",
        "JobDescription": "restore",
        "SHA256TreeHash": "ab" * 32,
        "StatusCode": "Succeeded",
        "StatusMessage": "Succeeded",
        "VaultARN": "arn:vault:photos",
    }
    data.update(overrides)
    return data


class TestJob:
    """Tests for Job dataclass."""

    def test_from_dict(self) -> None:
        """Should create Job from dictionary."""
        job = Job.from_dict(job_dict())

        assert job.id == "job-1"
        assert job.action is JobAction.ARCHIVE_RETRIEVAL
        assert job.completed is True
        assert job.archive_size == 3145728
        assert job.tree_hash == "ab" * 32
        assert job.creation_date == datetime(2025, 1, 2, 10, 0, 0, tzinfo=timezone.utc)
        assert job.size == 3145728

    def test_inventory_job_size(self) -> None:
        """Inventory jobs report the inventory size."""
        job = Job.from_dict(
            job_dict(
                Action="InventoryRetrieval",
                ArchiveId=None,
                ArchiveSizeInBytes=None,
                InventorySizeInBytes=2048,
            )
        )

        assert job.action is JobAction.INVENTORY_RETRIEVAL
        assert job.size == 2048

    def test_pending_job(self) -> None:
        """A pending job has no completion date."""
        job = Job.from_dict(
            job_dict(Completed=False, CompletionDate=None, StatusCode="InProgress")
        )

        assert job.completed is False
        assert job.completion_date is None
        assert job.status_code == "InProgress"


class TestInventory:
    """Tests for Inventory dataclass."""

    def test_from_dict(self) -> None:
        """Should parse archives in the inventory document."""
        inventory = Inventory.from_dict({
            "VaultARN": "arn:vault:photos",
            "InventoryDate": "2025-01-03T00:00:00Z",
            "ArchiveList": [
                {
                    "ArchiveId": "a1",
                    "ArchiveDescription": "2024 backup",
                    "CreationDate": "2025-01-01T00:00:00Z",
                    "Size": 100,
                    "SHA256TreeHash": "cd" * 32,
                }
            ],
        })

        assert inventory.vault_arn == "arn:vault:photos"
        assert len(inventory.archives) == 1
        assert inventory.archives[0].archive_id == "a1"
        assert inventory.archives[0].size == 100


class TestVaultClient:
    """Tests for VaultClient."""

    def test_sends_bearer_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Every request carries the configured token."""
        httpx_mock.add_response(
            url=f"{BASE}/jobs/job-1",
            match_headers={"Authorization": "Bearer token123"},
            json=job_dict(),
        )

        with VaultClient(make_config()) as client:
            job = client.describe_job("photos", "job-1")

        assert job.id == "job-1"

    def test_custom_account_in_path(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should address vaults under the configured account."""
        httpx_mock.add_response(url="http://test/1234/vaults/photos/jobs/job-1", json=job_dict())

        config = VaultConfig(endpoint_url="http://test", token="t", account_id="1234")
        with VaultClient(config) as client:
            client.describe_job("photos", "job-1")

    def test_initiate_retrieval_job(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should post the job parameters and return the job ID."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/jobs",
            status_code=202,
            headers={"x-amz-job-id": "job-42"},
        )

        with VaultClient(make_config()) as client:
            job_id = client.initiate_retrieval_job(
                "photos", "archive-1", sns_topic="topic", description="restore"
            )

        assert job_id == "job-42"
        body = json.loads(httpx_mock.get_request().content)
        assert body == {
            "Type": "archive-retrieval",
            "ArchiveId": "archive-1",
            "SNSTopic": "topic",
            "Description": "restore",
        }

    def test_initiate_inventory_job(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Inventory jobs carry no archive ID."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/jobs",
            status_code=202,
            headers={"x-amz-job-id": "job-7"},
        )

        with VaultClient(make_config()) as client:
            job_id = client.initiate_inventory_job("photos")

        assert job_id == "job-7"
        body = json.loads(httpx_mock.get_request().content)
        assert body == {"Type": "inventory-retrieval"}

    def test_initiate_job_missing_id(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A response without a job ID is an error."""
        httpx_mock.add_response(method="POST", url=f"{BASE}/jobs", status_code=202)

        with VaultClient(make_config()) as client, pytest.raises(APIError, match="job id"):
            client.initiate_inventory_job("photos")

    def test_list_jobs_with_filters(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should pass filters as query parameters and return the marker."""
        httpx_mock.add_response(
            url=f"{BASE}/jobs?completed=true&limit=10",
            json={"JobList": [job_dict()], "Marker": "next-page"},
        )

        with VaultClient(make_config()) as client:
            page = client.list_jobs("photos", completed=True, limit=10)

        assert [j.id for j in page.jobs] == ["job-1"]
        assert page.marker == "next-page"

    def test_get_job_output_range(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should request an inclusive byte range and return the tree hash."""
        httpx_mock.add_response(
            url=f"{BASE}/jobs/job-1/output",
            match_headers={"Range": "bytes=1048576-2097151"},
            status_code=206,
            content=b"x" * 10,
            headers={
                "x-amz-sha256-tree-hash": "ef" * 32,
                "Content-Range": "bytes 1048576-2097151/3145728",
            },
        )

        with VaultClient(make_config()) as client:
            output = client.get_job_output("photos", "job-1", 1048576, 2097151)

        assert output.data == b"x" * 10
        assert output.size == 10
        assert output.tree_hash == "ef" * 32
        assert output.content_range == "bytes 1048576-2097151/3145728"

    def test_get_job_output_whole(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Without bounds no Range header is sent."""
        httpx_mock.add_response(url=f"{BASE}/jobs/job-1/output", content=b"all")

        with VaultClient(make_config()) as client:
            output = client.get_job_output("photos", "job-1")

        assert output.data == b"all"
        assert "Range" not in httpx_mock.get_request().headers

    def test_get_inventory(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should parse the inventory document."""
        httpx_mock.add_response(
            url=f"{BASE}/jobs/job-9/output",
            json={"VaultARN": "arn:vault:photos", "ArchiveList": []},
        )

        with VaultClient(make_config()) as client:
            inventory = client.get_inventory("photos", "job-9")

        assert inventory.vault_arn == "arn:vault:photos"
        assert inventory.archives == []

    def test_initiate_multipart_upload(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send the part size and description headers."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/multipart-uploads",
            match_headers={
                "x-amz-part-size": "1048576",
                "x-amz-archive-description": "backup",
            },
            status_code=201,
            headers={"x-amz-multipart-upload-id": "upload-1"},
        )

        with VaultClient(make_config()) as client:
            upload_id = client.initiate_multipart_upload("photos", 1048576, "backup")

        assert upload_id == "upload-1"

    def test_upload_part(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send the part with its range and fingerprints."""
        httpx_mock.add_response(
            method="PUT",
            url=f"{BASE}/multipart-uploads/upload-1",
            match_headers={
                "Content-Range": "bytes 1048576-1048580/*",
                "x-amz-sha256-tree-hash": "aa" * 32,
                "x-amz-content-sha256": "bb" * 32,
            },
            status_code=204,
        )

        with VaultClient(make_config()) as client:
            client.upload_part("photos", "upload-1", 1048576, b"12345", "aa" * 32, "bb" * 32)

        assert httpx_mock.get_request().content == b"12345"

    def test_complete_multipart_upload(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send the archive tree hash and size and return the location."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/multipart-uploads/upload-1",
            match_headers={
                "x-amz-sha256-tree-hash": "cc" * 32,
                "x-amz-archive-size": "3145728",
            },
            status_code=201,
            headers={
                "Location": "/-/vaults/photos/archives/archive-9",
                "x-amz-archive-id": "archive-9",
            },
        )

        with VaultClient(make_config()) as client:
            location = client.complete_multipart_upload("photos", "upload-1", "cc" * 32, 3145728)

        assert location.location == "/-/vaults/photos/archives/archive-9"
        assert location.archive_id == "archive-9"

    def test_abort_multipart_upload(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should delete the upload."""
        httpx_mock.add_response(
            method="DELETE", url=f"{BASE}/multipart-uploads/upload-1", status_code=204
        )

        with VaultClient(make_config()) as client:
            client.abort_multipart_upload("photos", "upload-1")

    def test_list_multipart_uploads(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should parse in-progress uploads."""
        httpx_mock.add_response(
            url=f"{BASE}/multipart-uploads",
            json={
                "UploadsList": [
                    {
                        "MultipartUploadId": "upload-1",
                        "PartSizeInBytes": 4194304,
                        "ArchiveDescription": "backup",
                        "CreationDate": "2025-01-01T00:00:00Z",
                    }
                ]
            },
        )

        with VaultClient(make_config()) as client:
            uploads = client.list_multipart_uploads("photos")

        assert len(uploads) == 1
        assert uploads[0].upload_id == "upload-1"
        assert uploads[0].part_size == 4194304


class TestErrorMapping:
    """Tests for HTTP status to exception mapping."""

    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, NotFoundError),
            (429, ServiceUnavailableError),
            (500, ServiceUnavailableError),
            (503, ServiceUnavailableError),
        ],
    )
    def test_status_codes(self, httpx_mock, status: int, error: type[APIError]) -> None:  # type: ignore[no-untyped-def]
        """Should raise the matching exception."""
        httpx_mock.add_response(url=f"{BASE}/jobs/job-1", status_code=status)

        with VaultClient(make_config()) as client, pytest.raises(error) as exc_info:
            client.describe_job("photos", "job-1")

        assert exc_info.value.status_code == status

    def test_other_client_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Other 4xx responses raise a plain APIError with the service message."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/multipart-uploads/upload-1",
            status_code=400,
            json={"message": "tree hash does not match"},
        )

        with VaultClient(make_config()) as client, pytest.raises(APIError) as exc_info:
            client.complete_multipart_upload("photos", "upload-1", "00" * 32, 10)

        assert type(exc_info.value) is APIError
        assert exc_info.value.status_code == 400
        assert "tree hash does not match" in str(exc_info.value)
