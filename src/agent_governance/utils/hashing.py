"""
agent-governance — hashing utilities

File: src/agent_governance/utils/hashing.py

Purpose
- Deterministic SHA-256 helpers for bytes, text, and files.
- Content-addressed hashing of workspace file trees.

Functional requirements
- Manifest paths are relative POSIX strings with deterministic ordering.
- ``content_hash`` depends only on (path, content) pairs: identical trees hash
  identically regardless of timestamps or insertion order.
"""

from __future__ import annotations

import hashlib
import json
import os
import stat
from collections.abc import Mapping
from pathlib import Path, PurePosixPath

PathLike = str | os.PathLike[str]

_FILE_READ_CHUNK_BYTES = 1024 * 1024

__all__ = [
    "content_hash",
    "create_manifest",
    "normalize_relative_path",
    "read_tree",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while chunk := file_handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def normalize_relative_path(raw: str) -> str:
    """Return ``raw`` as a safe relative POSIX path or raise ``ValueError``."""

    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("path must be a non-empty string")
    posix_path = PurePosixPath(raw.replace("\\", "/"))
    if posix_path.is_absolute():
        raise ValueError(f"path must be relative: {raw!r}")
    if any(part in {"", ".", ".."} for part in posix_path.parts):
        raise ValueError(f"path is not safe: {raw!r}")
    return posix_path.as_posix()


def content_hash(files: Mapping[str, bytes | str]) -> str:
    """
    Hash a file tree given as ``relative path -> content``.

    The canonical form is the sorted JSON object ``{path: sha256(content)}``;
    text content is hashed as UTF-8.
    """

    digests: dict[str, str] = {}
    for raw_path, content in files.items():
        path = normalize_relative_path(raw_path)
        if path in digests:
            raise ValueError(f"duplicate path after normalization: {path!r}")
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        digests[path] = sha256_bytes(data)
    canonical = json.dumps(digests, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return sha256_text(canonical)


def read_tree(directory: PathLike, *, include_hidden: bool = False) -> dict[str, bytes]:
    """Read every regular file under ``directory`` keyed by relative POSIX path."""

    root = Path(directory).resolve(strict=True)
    if not root.is_dir():
        raise NotADirectoryError(f"{root!s} is not a directory")

    files: dict[str, bytes] = {}
    for current_dir, dir_names, file_names in os.walk(root, topdown=True, followlinks=False):
        if not include_hidden:
            dir_names[:] = [name for name in dir_names if not name.startswith(".")]
        dir_names.sort()
        current = Path(current_dir)
        for file_name in sorted(file_names):
            if not include_hidden and file_name.startswith("."):
                continue
            file_path = current / file_name
            try:
                mode = file_path.lstat().st_mode
            except FileNotFoundError:
                continue
            if not stat.S_ISREG(mode):
                continue
            files[file_path.relative_to(root).as_posix()] = file_path.read_bytes()
    return files


def create_manifest(directory: PathLike, *, include_hidden: bool = False) -> dict[str, str]:
    """Build a deterministic ``relative path -> sha256`` manifest for ``directory``."""

    tree = read_tree(directory, include_hidden=include_hidden)
    return {path: sha256_bytes(tree[path]) for path in sorted(tree)}
