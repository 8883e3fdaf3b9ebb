"""SHA-256 tree hashing for coldvault.

This module provides the fingerprint scheme used by the cold-storage service
to verify large archives:
- Data is split into fixed 1 MiB blocks, each hashed with SHA-256
- Block digests are paired left to right and re-hashed until one remains
- An odd trailing digest is carried up to the next level unchanged

The root digest ("tree hash") of a whole archive can be rebuilt from the
roots of its parts as long as every part except the last covers a
power-of-two number of blocks.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

BLOCK_SIZE = 1024 * 1024  # 1 MiB

# Largest part size accepted by the service for multipart uploads
MAX_PART_SIZE = 4 * 1024 * 1024 * 1024  # 4 GiB

# Read size used when hashing files
READ_SIZE = 4 * BLOCK_SIZE


def _combine(digests: list[bytes]) -> bytes:
    """Reduce a list of raw digests to a single root digest."""
    level = digests
    while len(level) > 1:
        next_level = [
            hashlib.sha256(level[i] + level[i + 1]).digest()
            for i in range(0, len(level) - 1, 2)
        ]
        if len(level) % 2:
            next_level.append(level[-1])
        level = next_level
    return level[0]


class TreeHasher:
    """Incremental tree hash accumulator.

    Accepts writes of any size, re-chunks them into 1 MiB blocks and keeps
    one digest per completed block. A single instance is meant to be reused
    across many data units via reset().

    Example:
        hasher = TreeHasher()
        hasher.write(data)
        hasher.close()
        root = hasher.tree_hash()
        hasher.reset()
    """

    def __init__(self) -> None:
        self._blocks: list[bytes] = []
        self._buffer = bytearray()
        self._linear = hashlib.sha256()
        self._size = 0
        self._root: bytes | None = None

    @property
    def size(self) -> int:
        """Number of bytes written since the last reset."""
        return self._size

    @property
    def closed(self) -> bool:
        """True once close() has frozen the block list."""
        return self._root is not None

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Feed bytes into the hasher.

        Args:
            data: Bytes to append to the current data unit.

        Returns:
            Number of bytes consumed.

        Raises:
            RuntimeError: If the hasher has already been closed.
        """
        if self._root is not None:
            raise RuntimeError("TreeHasher is closed; call reset() first")

        view = memoryview(data)
        self._linear.update(view)
        self._size += len(view)

        # Hash whole blocks straight from the input when the buffer is empty
        offset = 0
        if self._buffer:
            take = min(BLOCK_SIZE - len(self._buffer), len(view))
            self._buffer += view[:take]
            offset = take
            if len(self._buffer) == BLOCK_SIZE:
                self._blocks.append(hashlib.sha256(self._buffer).digest())
                self._buffer.clear()

        while len(view) - offset >= BLOCK_SIZE:
            self._blocks.append(
                hashlib.sha256(view[offset : offset + BLOCK_SIZE]).digest()
            )
            offset += BLOCK_SIZE

        if offset < len(view):
            self._buffer += view[offset:]

        return len(view)

    def close(self) -> None:
        """Flush the trailing partial block and compute the root digest.

        Calling close() twice is a no-op.
        """
        if self._root is not None:
            return
        if self._buffer or not self._blocks:
            self._blocks.append(hashlib.sha256(self._buffer).digest())
            self._buffer.clear()
        self._root = _combine(self._blocks)

    def hash(self) -> str:
        """Return the linear SHA-256 of all bytes written since reset.

        For a unit of at most one block this is that block's digest.
        """
        return self._linear.hexdigest()

    def tree_hash(self) -> str:
        """Return the root digest as a hex string.

        Raises:
            RuntimeError: If close() has not been called.
        """
        if self._root is None:
            raise RuntimeError("tree_hash() called before close()")
        return self._root.hex()

    def block_hashes(self) -> list[str]:
        """Return the digests of completed blocks, in offset order."""
        return [digest.hex() for digest in self._blocks]

    def reset(self) -> None:
        """Clear all state so the hasher can fingerprint the next unit."""
        self._blocks.clear()
        self._buffer.clear()
        self._linear = hashlib.sha256()
        self._size = 0
        self._root = None


def combine_tree_hashes(hashes: Iterable[str]) -> str:
    """Combine hex tree hashes of consecutive parts into one root.

    Args:
        hashes: Hex digests in offset order.

    Returns:
        Hex root digest.

    Raises:
        ValueError: If no hashes are given.
    """
    digests = [bytes.fromhex(h) for h in hashes]
    if not digests:
        raise ValueError("Cannot combine an empty list of tree hashes")
    return _combine(digests).hex()


def compute_tree_hash(data: bytes) -> str:
    """Compute the tree hash of an in-memory byte string."""
    hasher = TreeHasher()
    hasher.write(data)
    hasher.close()
    return hasher.tree_hash()


def tree_hash_file(
    source: Path | str | BinaryIO,
    hasher: TreeHasher | None = None,
) -> tuple[str, int]:
    """Compute the tree hash of a whole file.

    Args:
        source: Path to the file, or a binary file object positioned at the
            start of the data to hash.
        hasher: Optional hasher to reuse; it is reset before use.

    Returns:
        Tuple of (hex tree hash, number of bytes hashed).
    """
    hasher = hasher or TreeHasher()
    hasher.reset()

    if isinstance(source, (str, Path)):
        with open(source, "rb") as f:
            _feed(hasher, f)
    else:
        _feed(hasher, source)

    hasher.close()
    return hasher.tree_hash(), hasher.size


def _feed(hasher: TreeHasher, f: BinaryIO) -> None:
    while True:
        data = f.read(READ_SIZE)
        if not data:
            return
        hasher.write(data)


def is_tree_hash_aligned(size: int) -> bool:
    """Check that size is 1 MiB times a power of two.

    Parts and download windows of such sizes start on tree boundaries, so
    their roots combine into the root of the whole archive.
    """
    if size < BLOCK_SIZE or size % BLOCK_SIZE:
        return False
    blocks = size // BLOCK_SIZE
    return blocks & (blocks - 1) == 0
