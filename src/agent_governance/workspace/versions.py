"""
agent-governance — workspace versions

File: src/agent_governance/workspace/versions.py

Purpose
- Content-addressed, append-only snapshot history of a workspace directory.
- Diffing between snapshots and re-application of a snapshot (rollback).

Functional requirements
- A version hash is ``content_hash`` of the file tree: identical content yields
  the identical hash regardless of time; re-recording it adds no new row.
- File contents are stored once per sha256 in ``workspace_blobs``.
- ``rollback`` always writes exactly one ``workspace_change`` entry (success
  or failure). An override, when supplied, is validated and its
  ``ops_override_used`` entry committed before the live tree is touched.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from agent_governance.constants import DEFAULT_PAGE_SIZE
from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import NotFoundError, ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
from agent_governance.governance.overrides import OverrideRequest, coerce_override, record_override
from agent_governance.governance.permissions import Permission, Role, require_permission
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    Page,
    as_non_empty_str,
    as_optional_str,
    iso8601z,
    load_json_object,
    row_int,
    row_optional_text,
    row_text,
    sql_placeholders,
    utc_now,
)
from agent_governance.persistence.state_db import StateDB, canonical_json
from agent_governance.utils.fs import atomic_write, safe_unlink
from agent_governance.utils.hashing import (
    content_hash,
    normalize_relative_path,
    read_tree,
    sha256_bytes,
)


class FileStatus(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class WorkspaceVersion:
    workspace_id: str
    hash: str
    files: dict[str, str]
    sizes: dict[str, int]
    total_size: int
    message: str | None
    created_at: str

    @property
    def file_count(self) -> int:
        return len(self.files)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "workspace_id": self.workspace_id,
            "hash": self.hash,
            "files": dict(self.files),
            "sizes": dict(self.sizes),
            "total_size": self.total_size,
            "message": self.message,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class FileChange:
    path: str
    status: FileStatus
    old_size: int | None
    new_size: int | None


@dataclass(frozen=True, slots=True)
class FileDiff:
    """Per-path comparison of two file trees; ``changes`` is sorted by path."""

    old_hash: str
    new_hash: str
    changes: tuple[FileChange, ...] = field(default_factory=tuple)

    def _paths(self, status: FileStatus) -> tuple[str, ...]:
        return tuple(change.path for change in self.changes if change.status is status)

    @property
    def added(self) -> tuple[str, ...]:
        return self._paths(FileStatus.ADDED)

    @property
    def modified(self) -> tuple[str, ...]:
        return self._paths(FileStatus.MODIFIED)

    @property
    def deleted(self) -> tuple[str, ...]:
        return self._paths(FileStatus.DELETED)

    @property
    def unchanged(self) -> tuple[str, ...]:
        return self._paths(FileStatus.UNCHANGED)

    @property
    def old_files(self) -> int:
        return sum(1 for change in self.changes if change.old_size is not None)

    @property
    def new_files(self) -> int:
        return sum(1 for change in self.changes if change.new_size is not None)

    @property
    def old_size(self) -> int:
        return sum(change.old_size or 0 for change in self.changes)

    @property
    def new_size(self) -> int:
        return sum(change.new_size or 0 for change in self.changes)

    @property
    def files_changed(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)

    @property
    def has_changes(self) -> bool:
        return self.files_changed > 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "old_hash": self.old_hash,
            "new_hash": self.new_hash,
            "added": list(self.added),
            "modified": list(self.modified),
            "deleted": list(self.deleted),
            "old_files": self.old_files,
            "new_files": self.new_files,
            "old_size": self.old_size,
            "new_size": self.new_size,
        }


@dataclass(frozen=True, slots=True)
class RollbackResult:
    workspace_id: str
    version_hash: str
    files_written: tuple[str, ...]
    files_removed: tuple[str, ...]
    override_used: bool

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "workspace_id": self.workspace_id,
            "version_hash": self.version_hash,
            "files_written": list(self.files_written),
            "files_removed": list(self.files_removed),
            "override_used": self.override_used,
        }


def diff_manifests(
    old: Mapping[str, str],
    new: Mapping[str, str],
    *,
    old_sizes: Mapping[str, int],
    new_sizes: Mapping[str, int],
    old_hash: str,
    new_hash: str,
) -> FileDiff:
    """Compare two ``path -> sha256`` manifests."""

    changes: list[FileChange] = []
    for path in sorted(set(old) | set(new)):
        if path not in old:
            status = FileStatus.ADDED
        elif path not in new:
            status = FileStatus.DELETED
        elif old[path] != new[path]:
            status = FileStatus.MODIFIED
        else:
            status = FileStatus.UNCHANGED
        changes.append(
            FileChange(
                path=path,
                status=status,
                old_size=old_sizes.get(path) if path in old else None,
                new_size=new_sizes.get(path) if path in new else None,
            )
        )
    return FileDiff(old_hash=old_hash, new_hash=new_hash, changes=tuple(changes))


class WorkspaceVersioning(BaseRepo):
    def __init__(
        self,
        db: StateDB,
        audit: AuditLog,
        workspace_root: str | Path,
        *,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(db)
        self._audit = audit
        self._root = Path(workspace_root)
        self._clock = clock if clock is not None else utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def workspace_root(self) -> Path:
        return self._root

    def snapshot(
        self,
        workspace_id: str,
        *,
        message: str | None = None,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> WorkspaceVersion:
        """Record the live workspace directory; hidden files and directories are skipped."""

        return self.record(
            workspace_id,
            read_tree(self._root),
            message=message,
            actor=actor,
            tenant_id=tenant_id,
        )

    def record(
        self,
        workspace_id: str,
        files: Mapping[str, bytes | str],
        *,
        message: str | None = None,
        actor: str | None = None,
        tenant_id: str | None = None,
    ) -> WorkspaceVersion:
        """Record a version from an in-memory ``path -> content`` map."""

        workspace = as_non_empty_str(workspace_id, "workspace_id")
        note = as_optional_str(message, "message")
        try:
            version_hash = content_hash(files)
            contents = {
                normalize_relative_path(path): (
                    content.encode("utf-8") if isinstance(content, str) else bytes(content)
                )
                for path, content in files.items()
            }
        except ValueError as exc:
            raise ValidationError(f"files: {exc}") from exc
        manifest = {path: sha256_bytes(contents[path]) for path in sorted(contents)}
        sizes = {path: len(contents[path]) for path in sorted(contents)}
        created_at = iso8601z(self._clock())

        with self._db.transaction() as conn:
            existing = self._load(workspace, version_hash, conn=conn)
            if existing is not None:
                self._logger.debug(
                    "workspace_version_unchanged", workspace_id=workspace, hash=version_hash
                )
                return existing
            self._db.executemany(
                "INSERT OR IGNORE INTO workspace_blobs (sha256, size_bytes, content) VALUES (?, ?, ?)",
                [(manifest[path], sizes[path], contents[path]) for path in manifest],
                conn=conn,
            )
            self._db.execute(
                """
                INSERT INTO workspace_versions (
                    workspace_id, hash, files_json, total_size, message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    workspace,
                    version_hash,
                    canonical_json(
                        {path: {"sha256": manifest[path], "size": sizes[path]} for path in manifest}
                    ),
                    sum(sizes.values()),
                    note,
                    created_at,
                ),
                conn=conn,
            )
            self._audit.log(
                AuditEventType.WORKSPACE_CHANGE,
                tenant_id=tenant_id or workspace,
                workspace_id=workspace,
                actor=actor,
                details=AuditDetails(
                    action="snapshot",
                    target_id=version_hash,
                    data={"files": len(manifest), "total_size": sum(sizes.values()), "message": note},
                ),
                conn=conn,
            )

        self._logger.info(
            "workspace_version_recorded",
            workspace_id=workspace,
            hash=version_hash,
            files=len(manifest),
        )
        return WorkspaceVersion(
            workspace_id=workspace,
            hash=version_hash,
            files=manifest,
            sizes=sizes,
            total_size=sum(sizes.values()),
            message=note,
            created_at=created_at,
        )

    def get(self, version_hash: str, *, workspace_id: str | None = None) -> WorkspaceVersion | None:
        if workspace_id is not None:
            return self._load(workspace_id, version_hash)
        row = self._db.query_one(
            "SELECT * FROM workspace_versions WHERE hash = ? ORDER BY created_at ASC LIMIT 1",
            (as_non_empty_str(version_hash, "version_hash"),),
        )
        return None if row is None else _version_from_row(row)

    def require(self, version_hash: str, *, workspace_id: str | None = None) -> WorkspaceVersion:
        version = self.get(version_hash, workspace_id=workspace_id)
        if version is None:
            raise NotFoundError("workspace version", version_hash)
        return version

    def list_versions(
        self, workspace_id: str, *, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> Page[WorkspaceVersion]:
        """Newest first."""

        self._validate_page(limit, offset)
        workspace = as_non_empty_str(workspace_id, "workspace_id")
        total_row = self._db.query_one(
            "SELECT COUNT(*) AS total FROM workspace_versions WHERE workspace_id = ?", (workspace,)
        )
        rows = self._db.query_all(
            """
            SELECT * FROM workspace_versions WHERE workspace_id = ?
            ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?
            """,
            (workspace, limit, offset),
        )
        return Page(
            items=tuple(_version_from_row(row) for row in rows),
            total=0 if total_row is None else row_int(total_row, "total"),
            limit=limit,
            offset=offset,
        )

    def read_files(self, version_hash: str, *, workspace_id: str | None = None) -> dict[str, bytes]:
        """Stored contents of a version keyed by relative path."""

        version = self.require(version_hash, workspace_id=workspace_id)
        digests = sorted(set(version.files.values()))
        blobs: dict[str, bytes] = {}
        if digests:
            rows = self._db.query_all(
                f"SELECT sha256, content FROM workspace_blobs WHERE sha256 IN ({sql_placeholders(digests)})",
                tuple(digests),
            )
            for row in rows:
                content = row.get("content")
                if isinstance(content, bytes):
                    blobs[row_text(row, "sha256", "workspace_blobs.sha256")] = content
        missing = [digest for digest in digests if digest not in blobs]
        if missing:
            raise NotFoundError("workspace blob", missing[0])
        return {path: blobs[digest] for path, digest in sorted(version.files.items())}

    def diff(self, old_hash: str, new_hash: str) -> FileDiff:
        old = self.require(old_hash)
        new = self.require(new_hash)
        return diff_manifests(
            old.files,
            new.files,
            old_sizes=old.sizes,
            new_sizes=new.sizes,
            old_hash=old.hash,
            new_hash=new.hash,
        )

    def diff_from_current(self, version_hash: str) -> FileDiff:
        """Diff the live workspace (old side) against a stored version (new side)."""

        target = self.require(version_hash)
        live = read_tree(self._root)
        return diff_manifests(
            {path: sha256_bytes(data) for path, data in live.items()},
            target.files,
            old_sizes={path: len(data) for path, data in live.items()},
            new_sizes=target.sizes,
            old_hash=content_hash(live),
            new_hash=target.hash,
        )

    def rollback(
        self,
        workspace_id: str,
        version_hash: str,
        *,
        actor: str,
        role: Role | str,
        override: OverrideRequest | tuple[str, str] | None = None,
        annotation: Mapping[str, str] | None = None,
        tenant_id: str | None = None,
    ) -> RollbackResult:
        """
        Re-apply a stored snapshot to the live workspace directory.

        Files in the snapshot are written, tracked (non-hidden) files absent from
        it are removed. The ``workspace_change`` entry is written whether or not
        this succeeds; failures re-raise after it is recorded. If that entry
        cannot be written, the previous tree is restored before re-raising.
        """

        workspace = as_non_empty_str(workspace_id, "workspace_id")
        version = as_non_empty_str(version_hash, "version_hash")
        operator = as_non_empty_str(actor, "actor")
        tenant = tenant_id or workspace
        request = coerce_override(override)
        require_permission(role, Permission.WORKSPACE_ROLLBACK)
        if request is not None:
            require_permission(role, Permission.OVERRIDE_USE)
        note = _annotation_payload(annotation)

        if request is not None:
            with self._db.transaction() as conn:
                record_override(
                    self._audit,
                    request,
                    tenant_id=tenant,
                    workspace_id=workspace,
                    actor=operator,
                    role=str(role),
                    action=Permission.WORKSPACE_ROLLBACK.value,
                    target_id=workspace,
                    conn=conn,
                )

        base: dict[str, JSONValue] = {
            "version_hash": version,
            "annotation": note,
            "override_used": request is not None,
            "override_reason": None if request is None else request.reason_code.value,
        }
        previous: dict[str, bytes] | None = None
        try:
            snapshot = self.read_files(version, workspace_id=workspace)
            self._root.mkdir(parents=True, exist_ok=True)
            previous = read_tree(self._root)
            written, removed = self._write_tree(snapshot)
        except Exception as exc:
            if previous is not None:
                self._write_tree(previous)
            self._record_rollback(
                tenant, workspace, operator, {**base, "success": False, "error": str(exc)}
            )
            self._logger.error(
                "workspace_rollback_failed", workspace_id=workspace, version_hash=version, error=str(exc)
            )
            raise

        try:
            self._record_rollback(
                tenant,
                workspace,
                operator,
                {**base, "success": True, "files_written": len(written), "files_removed": len(removed)},
            )
        except Exception as exc:
            self._write_tree(previous)
            self._logger.error(
                "workspace_rollback_reverted",
                workspace_id=workspace,
                version_hash=version,
                error=str(exc),
            )
            raise

        self._logger.info(
            "workspace_rolled_back",
            workspace_id=workspace,
            version_hash=version,
            files_written=len(written),
            files_removed=len(removed),
            override_used=request is not None,
        )
        return RollbackResult(
            workspace_id=workspace,
            version_hash=version,
            files_written=written,
            files_removed=removed,
            override_used=request is not None,
        )

    def _write_tree(self, files: Mapping[str, bytes]) -> tuple[tuple[str, ...], tuple[str, ...]]:
        live = read_tree(self._root)
        written: list[str] = []
        for path, content in files.items():
            if live.get(path) == content:
                continue
            atomic_write(self._root / path, content)
            written.append(path)
        removed: list[str] = []
        for path in sorted(set(live) - set(files)):
            safe_unlink(self._root / path, self._root)
            removed.append(path)
        return tuple(written), tuple(removed)

    def _record_rollback(
        self, tenant_id: str, workspace_id: str, actor: str, data: dict[str, JSONValue]
    ) -> None:
        self._audit.log(
            AuditEventType.WORKSPACE_CHANGE,
            tenant_id=tenant_id,
            workspace_id=workspace_id,
            actor=actor,
            details=AuditDetails(action="rollback", target_id=workspace_id, data=data),
        )

    def _load(
        self,
        workspace_id: str,
        version_hash: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> WorkspaceVersion | None:
        row = self._db.query_one(
            "SELECT * FROM workspace_versions WHERE workspace_id = ? AND hash = ?",
            (workspace_id, version_hash),
            conn=conn,
        )
        return None if row is None else _version_from_row(row)


def _annotation_payload(annotation: Mapping[str, str] | None) -> dict[str, JSONValue] | None:
    if annotation is None:
        return None
    return {
        "key": as_non_empty_str(annotation.get("key"), "annotation.key"),
        "value": as_non_empty_str(annotation.get("value"), "annotation.value"),
    }


def _version_from_row(row: Mapping[str, Any]) -> WorkspaceVersion:
    entries = load_json_object(row.get("files_json"), "workspace_versions.files_json")
    files: dict[str, str] = {}
    sizes: dict[str, int] = {}
    for path, entry in entries.items():
        if not isinstance(entry, Mapping):
            raise ValidationError(f"workspace_versions.files_json.{path}: expected object")
        files[path] = str(entry.get("sha256", ""))
        size = entry.get("size", 0)
        sizes[path] = size if isinstance(size, int) and not isinstance(size, bool) else 0
    return WorkspaceVersion(
        workspace_id=row_text(row, "workspace_id", "workspace_versions.workspace_id"),
        hash=row_text(row, "hash", "workspace_versions.hash"),
        files=files,
        sizes=sizes,
        total_size=row_int(row, "total_size"),
        message=row_optional_text(row, "message"),
        created_at=row_text(row, "created_at", "workspace_versions.created_at"),
    )


__all__ = [
    "FileChange",
    "FileDiff",
    "FileStatus",
    "RollbackResult",
    "WorkspaceVersion",
    "WorkspaceVersioning",
    "diff_manifests",
]
