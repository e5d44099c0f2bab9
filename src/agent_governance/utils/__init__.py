"""Utility exports for hashing and filesystem helpers."""

from agent_governance.utils.fs import atomic_write, is_within, safe_unlink
from agent_governance.utils.hashing import (
    content_hash,
    create_manifest,
    normalize_relative_path,
    read_tree,
    sha256_bytes,
    sha256_file,
    sha256_text,
)

__all__ = [
    "atomic_write",
    "content_hash",
    "create_manifest",
    "is_within",
    "normalize_relative_path",
    "read_tree",
    "safe_unlink",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
]
