"""Core module - Tree hashing, configuration and shared types."""

from coldvault.core.config import (
    DEFAULT_PART_SIZE,
    DEFAULT_WINDOW_SIZE,
    MIB,
    TransferConfig,
    VaultConfig,
)
from coldvault.core.treehash import (
    BLOCK_SIZE,
    MAX_PART_SIZE,
    TreeHasher,
    combine_tree_hashes,
    compute_tree_hash,
    is_tree_hash_aligned,
    tree_hash_file,
)
from coldvault.core.types import JobAction, JobStatus

__all__ = [
    # Tree hashing
    "BLOCK_SIZE",
    "MAX_PART_SIZE",
    "TreeHasher",
    "combine_tree_hashes",
    "compute_tree_hash",
    "is_tree_hash_aligned",
    "tree_hash_file",
    # Config
    "DEFAULT_PART_SIZE",
    "DEFAULT_WINDOW_SIZE",
    "MIB",
    "TransferConfig",
    "VaultConfig",
    # Types
    "JobAction",
    "JobStatus",
]
