"""
agent-governance — filesystem utilities

File: src/agent_governance/utils/fs.py

Purpose
- Atomic writes and guarded deletion used when re-applying workspace snapshots.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Deletion refuses paths outside the workspace root.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "is_within",
    "safe_unlink",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``, creating parent directories.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target_parent))
    temp_path = Path(temp_name)
    payload = data if isinstance(data, bytes) else data.encode(encoding)
    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        Path(child).resolve().relative_to(Path(parent).resolve())
    except ValueError:
        return False
    return True


def safe_unlink(path: PathLike, workspace_root: PathLike) -> None:
    """Delete a single file only if it is contained within ``workspace_root``."""

    target = Path(path)
    if not is_within(target.parent, workspace_root):
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")
    if target.is_dir() and not target.is_symlink():
        raise IsADirectoryError(f"refusing to delete directory: {target!s}")
    target.unlink(missing_ok=True)
