"""Durable multipart upload sessions.

This module provides:
- Part: Fingerprints and upload flag of one part
- UploadSession: Plan and progress of one multipart upload
- plan_upload: Hash a source file into an UploadSession

Architecture:
    The session record on disk is the only source of truth for resuming an
    interrupted upload. It is a JSON document with an explicit
    schema_version, replaced atomically (temp file + rename) on every save
    so a torn write is never loaded as a valid session.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from coldvault.client.transfer.types import ProgressCallback, TransferProgress
from coldvault.core.treehash import MAX_PART_SIZE, TreeHasher, is_tree_hash_aligned

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SESSION_SUFFIX = ".upload.json"
READ_SIZE = 1024 * 1024


class SessionError(Exception):
    """Session record is missing, malformed, or inconsistent with its file."""


@dataclass
class Part:
    """One part of a multipart upload.

    Attributes:
        hash: Linear SHA-256 of the part's bytes.
        tree_hash: Tree hash of the part's bytes.
        uploaded: Whether the service has accepted this part.
    """

    hash: str
    tree_hash: str
    uploaded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.hash, "tree_hash": self.tree_hash, "uploaded": self.uploaded}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Part:
        uploaded = data["uploaded"]
        if not isinstance(uploaded, bool):
            raise SessionError(f"Malformed session record: uploaded flag {uploaded!r}")
        return cls(
            hash=str(data["hash"]),
            tree_hash=str(data["tree_hash"]),
            uploaded=uploaded,
        )


@dataclass
class UploadSession:
    """Plan and progress of one multipart upload.

    Attributes:
        vault: Target vault name.
        file_name: Path of the source file.
        part_size: Size of every part except possibly the last.
        archive_size: Size of the source file when the plan was made.
        description: Optional archive description.
        upload_id: Service upload ID, None until the upload is initiated.
        parts: Parts in offset order.
    """

    vault: str
    file_name: str
    part_size: int
    archive_size: int
    description: str | None = None
    upload_id: str | None = None
    parts: list[Part] = field(default_factory=list)

    @property
    def part_count(self) -> int:
        return len(self.parts)

    @property
    def uploaded_count(self) -> int:
        """Number of parts already accepted by the service."""
        return sum(1 for p in self.parts if p.uploaded)

    @property
    def is_complete(self) -> bool:
        return all(p.uploaded for p in self.parts)

    def part_range(self, index: int) -> tuple[int, int]:
        """Inclusive byte range covered by a part."""
        start = index * self.part_size
        return start, start + self.part_length(index) - 1

    def part_length(self, index: int) -> int:
        if not 0 <= index < len(self.parts):
            raise IndexError(f"Part {index} out of range")
        start = index * self.part_size
        return min(self.part_size, self.archive_size - start)

    def pending_parts(self) -> list[int]:
        """Indices of parts not yet uploaded, in order."""
        return [i for i, p in enumerate(self.parts) if not p.uploaded]

    def mark_uploaded(self, index: int) -> None:
        """Flip a part's uploaded flag.

        Raises:
            SessionError: If the part was already marked uploaded.
        """
        part = self.parts[index]
        if part.uploaded:
            raise SessionError(f"Part {index} is already marked uploaded")
        part.uploaded = True

    # === Persistence ===

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "vault": self.vault,
            "file_name": self.file_name,
            "part_size": self.part_size,
            "archive_size": self.archive_size,
            "description": self.description,
            "upload_id": self.upload_id,
            "parts": [p.to_dict() for p in self.parts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadSession:
        """Create from a session document.

        Raises:
            SessionError: If the schema version is unknown or fields are
                missing or inconsistent.
        """
        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise SessionError(f"Unsupported session schema version: {version!r}")

        try:
            session = cls(
                vault=str(data["vault"]),
                file_name=str(data["file_name"]),
                part_size=int(data["part_size"]),
                archive_size=int(data["archive_size"]),
                description=data.get("description"),
                upload_id=data.get("upload_id"),
                parts=[Part.from_dict(p) for p in data["parts"]],
            )
            validate_part_size(session.part_size)
            if session.archive_size <= 0:
                raise ValueError(f"invalid archive size {session.archive_size}")
        except (KeyError, TypeError, ValueError) as e:
            raise SessionError(f"Malformed session record: {e}") from e

        expected = expected_part_count(session.archive_size, session.part_size)
        if len(session.parts) != expected:
            raise SessionError(
                f"Session lists {len(session.parts)} parts, expected {expected}"
            )
        return session

    def save(self, path: Path) -> None:
        """Write the session atomically.

        Raises:
            SessionError: If the record cannot be written.
        """
        path = Path(path)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise SessionError(f"Cannot write session record {path}: {e}") from e

    @classmethod
    def load(cls, path: Path) -> UploadSession:
        """Read a session record.

        Raises:
            SessionError: If the record is missing or invalid.
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise SessionError(f"No upload session at {path}") from e
        except (OSError, ValueError) as e:
            raise SessionError(f"Cannot read session record {path}: {e}") from e
        if not isinstance(data, dict):
            raise SessionError(f"Malformed session record: {path}")
        return cls.from_dict(data)


def default_session_path(file_path: Path | str) -> Path:
    """Location of the session record for a source file."""
    file_path = Path(file_path)
    return file_path.with_name(file_path.name + SESSION_SUFFIX)


def expected_part_count(size: int, part_size: int) -> int:
    """ceil(size / part_size)."""
    return -(-size // part_size)


def validate_part_size(part_size: int) -> None:
    """Check the service's part size rule.

    Raises:
        ValueError: Unless part_size is 1 MiB times a power of two, <= 4 GiB.
    """
    if not is_tree_hash_aligned(part_size) or part_size > MAX_PART_SIZE:
        raise ValueError(
            f"Invalid part size {part_size}: must be 1 MiB times a power of two, "
            "at most 4 GiB"
        )


def plan_upload(
    vault: str,
    file_path: Path | str,
    part_size: int,
    description: str | None = None,
    progress_callback: ProgressCallback | None = None,
) -> UploadSession:
    """Hash a file into a new upload session.

    Reads the file once, part by part, reusing a single TreeHasher.

    Args:
        vault: Target vault name.
        file_path: Source file.
        part_size: Part size in bytes.
        description: Optional archive description.
        progress_callback: Optional callback after each hashed part.

    Returns:
        UploadSession with every part's fingerprints and no upload ID.

    Raises:
        ValueError: If part_size is invalid.
        SessionError: If the source file cannot be read.
    """
    validate_part_size(part_size)
    file_path = Path(file_path)

    try:
        size = file_path.stat().st_size
        if size == 0:
            raise SessionError(f"{file_path} is empty; nothing to upload")
        count = expected_part_count(size, part_size)
        parts: list[Part] = []
        hasher = TreeHasher()
        with open(file_path, "rb") as f:
            for i in range(count):
                remaining = min(part_size, size - i * part_size)
                while remaining > 0:
                    data = f.read(min(READ_SIZE, remaining))
                    if not data:
                        raise SessionError(f"{file_path} shrank while hashing")
                    hasher.write(data)
                    remaining -= len(data)
                hasher.close()
                parts.append(Part(hash=hasher.hash(), tree_hash=hasher.tree_hash()))
                hasher.reset()

                logger.debug(f"Hashed part {i + 1}/{count} of {file_path.name}")
                if progress_callback:
                    progress_callback(TransferProgress(
                        name=file_path.name,
                        total_bytes=size,
                        bytes_transferred=min((i + 1) * part_size, size),
                        current_unit=i + 1,
                        total_units=count,
                        operation="hash",
                    ))
    except OSError as e:
        raise SessionError(f"Cannot read {file_path}: {e}") from e

    logger.info(f"Planned upload of {file_path.name}: {count} parts of {part_size} bytes")

    return UploadSession(
        vault=vault,
        file_name=str(file_path),
        part_size=part_size,
        archive_size=size,
        description=description,
        parts=parts,
    )
