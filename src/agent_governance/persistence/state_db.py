"""
agent-governance — state database

File: src/agent_governance/persistence/state_db.py

Purpose
- SQLite schema management, migrations, and connection lifecycle for every
  governance entity (skills, budgets, traces, annotations, retention policies,
  workspace versions/environments/pins, audit log).

What should be included in this file
- Schema version table and checksummed migration runner.
- Safe locking strategy (``BEGIN IMMEDIATE``) and busy timeout handling.
- Append-only enforcement for the audit log and trace annotations.
- Backup and integrity-check helpers.

Functional requirements
- Must support idempotent migration application.
- Check-then-act sequences run inside one transaction so no partial state is
  observable.

Non-functional requirements
- Short-lived connections; no lock is held across calls.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final

from agent_governance.constants import STATE_DB_SCHEMA_VERSION
from agent_governance.domain.enums import (
    AuditEventType,
    SamplingStrategy,
    SkillState,
    StorageMode,
    TraceStatus,
)

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25


def _sql_enum(values: type[StrEnum]) -> str:
    return ",".join(f"'{item.value}'" for item in sorted(values, key=lambda item: item.value))


_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    _SCHEMA_VERSIONS_TABLE_SQL,
    f"""
    CREATE TABLE IF NOT EXISTS audit_log (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL,
        event_type TEXT NOT NULL CHECK (event_type IN ({_sql_enum(AuditEventType)})),
        tenant_id TEXT NOT NULL,
        workspace_id TEXT,
        trace_id TEXT,
        actor TEXT,
        details_json TEXT NOT NULL
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS audit_log_append_only_update
    BEFORE UPDATE ON audit_log
    BEGIN
        SELECT RAISE(ABORT, 'audit_log is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS audit_log_append_only_delete
    BEFORE DELETE ON audit_log
    BEGIN
        SELECT RAISE(ABORT, 'audit_log is append-only');
    END
    """,
    f"""
    CREATE TABLE IF NOT EXISTS skill_registry (
        name TEXT NOT NULL,
        version TEXT NOT NULL,
        description TEXT NOT NULL,
        manifest_json TEXT NOT NULL,
        instructions TEXT NOT NULL,
        checksum TEXT NOT NULL CHECK (length(checksum) = 64),
        state TEXT NOT NULL CHECK (state IN ({_sql_enum(SkillState)})),
        published_at TEXT NOT NULL,
        published_by TEXT,
        state_changed_at TEXT NOT NULL,
        PRIMARY KEY (name, version)
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS skill_registry_manifest_immutable
    BEFORE UPDATE OF name, version, description, manifest_json, instructions, checksum,
        published_at, published_by ON skill_registry
    BEGIN
        SELECT RAISE(ABORT, 'published skill manifests are immutable');
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS tenant_budgets (
        tenant_id TEXT PRIMARY KEY,
        limit_usd REAL NOT NULL CHECK (limit_usd > 0),
        spent_usd REAL NOT NULL DEFAULT 0 CHECK (spent_usd >= 0),
        period_start TEXT NOT NULL,
        period_end TEXT NOT NULL,
        soft_limit_usd REAL CHECK (soft_limit_usd IS NULL OR soft_limit_usd >= 0),
        hard_limit_usd REAL CHECK (hard_limit_usd IS NULL OR hard_limit_usd > 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (period_end > period_start)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS traces (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        workspace_id TEXT NOT NULL,
        agent_role TEXT,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        duration_ms INTEGER CHECK (duration_ms IS NULL OR duration_ms >= 0),
        status TEXT NOT NULL CHECK (status IN ({_sql_enum(TraceStatus)})),
        model TEXT NOT NULL,
        provider TEXT NOT NULL,
        workspace_hash TEXT,
        input_tokens INTEGER NOT NULL DEFAULT 0 CHECK (input_tokens >= 0),
        output_tokens INTEGER NOT NULL DEFAULT 0 CHECK (output_tokens >= 0),
        total_cost REAL NOT NULL DEFAULT 0 CHECK (total_cost >= 0),
        skill_versions_json TEXT NOT NULL,
        labels_json TEXT NOT NULL,
        task_id TEXT,
        document_id TEXT,
        message_id TEXT,
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS traces_finalized_immutable
    BEFORE UPDATE OF id, tenant_id, workspace_id, agent_role, started_at, completed_at,
        duration_ms, status, model, provider, workspace_hash, input_tokens, output_tokens,
        total_cost, skill_versions_json, task_id, document_id, message_id, payload_json
        ON traces
    BEGIN
        SELECT RAISE(ABORT, 'finalized traces are immutable except for labels');
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS trace_annotations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        trace_id TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        author TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY(trace_id) REFERENCES traces(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trace_annotations_append_only_update
    BEFORE UPDATE ON trace_annotations
    BEGIN
        SELECT RAISE(ABORT, 'trace_annotations is append-only');
    END
    """,
    f"""
    CREATE TABLE IF NOT EXISTS tenant_retention_policies (
        tenant_id TEXT PRIMARY KEY,
        retention_days INTEGER NOT NULL CHECK (retention_days > 0),
        sampling_strategy TEXT NOT NULL CHECK (sampling_strategy IN ({_sql_enum(SamplingStrategy)})),
        storage_mode TEXT NOT NULL CHECK (storage_mode IN ({_sql_enum(StorageMode)})),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_tenant_created ON audit_log(tenant_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_audit_type_created ON audit_log(event_type, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_audit_trace ON audit_log(trace_id)",
    "CREATE INDEX IF NOT EXISTS idx_skills_state ON skill_registry(state, name)",
    "CREATE INDEX IF NOT EXISTS idx_traces_tenant_started ON traces(tenant_id, started_at DESC)",
    """
    CREATE INDEX IF NOT EXISTS idx_traces_tenant_workspace_started
    ON traces(tenant_id, workspace_id, started_at DESC)
    """,
    "CREATE INDEX IF NOT EXISTS idx_traces_task ON traces(tenant_id, task_id)",
    "CREATE INDEX IF NOT EXISTS idx_traces_document ON traces(tenant_id, document_id)",
    "CREATE INDEX IF NOT EXISTS idx_traces_message ON traces(tenant_id, message_id)",
    "CREATE INDEX IF NOT EXISTS idx_trace_annotations_trace ON trace_annotations(trace_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_trace_annotations_key ON trace_annotations(key, id DESC)",
)

_MIGRATION_0002_STATEMENTS: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS workspace_blobs (
        sha256 TEXT PRIMARY KEY CHECK (length(sha256) = 64),
        size_bytes INTEGER NOT NULL CHECK (size_bytes >= 0),
        content BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workspace_versions (
        workspace_id TEXT NOT NULL,
        hash TEXT NOT NULL CHECK (length(hash) = 64),
        files_json TEXT NOT NULL,
        total_size INTEGER NOT NULL CHECK (total_size >= 0),
        message TEXT,
        created_at TEXT NOT NULL,
        PRIMARY KEY (workspace_id, hash)
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS workspace_versions_append_only_update
    BEFORE UPDATE ON workspace_versions
    BEGIN
        SELECT RAISE(ABORT, 'workspace_versions is append-only');
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS workspace_environments (
        workspace_id TEXT NOT NULL,
        environment TEXT NOT NULL,
        description TEXT,
        version_hash TEXT,
        is_default INTEGER NOT NULL DEFAULT 0 CHECK (is_default IN (0, 1)),
        locked INTEGER NOT NULL DEFAULT 0 CHECK (locked IN (0, 1)),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (workspace_id, environment)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workspace_pins (
        workspace_id TEXT NOT NULL,
        environment TEXT NOT NULL,
        version_hash TEXT NOT NULL,
        skill_pins_json TEXT NOT NULL,
        model_pin TEXT,
        provider_pin TEXT,
        pinned_at TEXT NOT NULL,
        pinned_by TEXT,
        PRIMARY KEY (workspace_id, environment)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_workspace_versions_created ON workspace_versions(workspace_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_workspace_pins_environment ON workspace_pins(environment)",
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str


def _migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{version}:{name}\n".encode())
    for statement in statements:
        normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
        digest.update(normalized.encode("utf-8"))
        digest.update(b"\n--\n")
    return digest.hexdigest()


_MIGRATIONS: Final[tuple[_Migration, ...]] = (
    _Migration(
        version=1,
        name="governance_core_schema",
        statements=_MIGRATION_0001_STATEMENTS,
        checksum=_migration_checksum(1, "governance_core_schema", _MIGRATION_0001_STATEMENTS),
    ),
    _Migration(
        version=2,
        name="workspace_lifecycle_schema",
        statements=_MIGRATION_0002_STATEMENTS,
        checksum=_migration_checksum(2, "workspace_lifecycle_schema", _MIGRATION_0002_STATEMENTS),
    ),
)

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


class StateDBError(RuntimeError):
    """Base class for persistence DB errors."""


class StateDBBusyError(StateDBError):
    """Raised when bounded busy retries are exhausted."""


class StateDBMigrationError(StateDBError):
    """Raised when migrations cannot be applied safely."""


class StateDBCorruptionError(StateDBError):
    """Raised when SQLite reports possible corruption."""


class StateDB:
    """SQLite state DB manager with deterministic migrations and safe helpers."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")

        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._savepoint_counter = 0
        self._migrated = False

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> sqlite3.Connection:
        """Open a configured SQLite connection for the state DB."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        self._configure_connection(conn)
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Run statements inside an atomic transaction with savepoint support."""

        if conn is None:
            with self.connection() as owned_conn:
                with self.transaction(conn=owned_conn, immediate=immediate) as txn_conn:
                    yield txn_conn
                return

        if conn.in_transaction:
            savepoint = self._next_savepoint_name()
            self._execute_with_retry(conn, f"SAVEPOINT {savepoint}", (), operation="savepoint")
            try:
                yield conn
            except BaseException:
                self._execute_with_retry(
                    conn, f"ROLLBACK TO SAVEPOINT {savepoint}", (), operation="rollback to savepoint"
                )
                self._execute_with_retry(
                    conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release savepoint"
                )
                raise
            else:
                self._execute_with_retry(
                    conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release savepoint"
                )
            return

        begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
        self._execute_with_retry(conn, begin_sql, (), operation="begin transaction")
        try:
            yield conn
        except BaseException:
            self._execute_with_retry(conn, "ROLLBACK", (), operation="rollback transaction")
            raise
        else:
            self._execute_with_retry(conn, "COMMIT", (), operation="commit transaction")

    def migrate(self) -> int:
        """Apply migrations idempotently and return current schema version."""

        self._validate_migration_chain(STATE_DB_SCHEMA_VERSION)
        with self.connection() as conn:
            self._execute_with_retry(
                conn, _SCHEMA_VERSIONS_TABLE_SQL, (), operation="create schema_versions table"
            )
            applied = self._load_applied_migrations(conn)
            current_version = max(applied, default=0)
            if current_version > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    "database schema is newer than supported by this release "
                    f"(db={current_version}, code={STATE_DB_SCHEMA_VERSION})"
                )

            for migration in _MIGRATIONS:
                if migration.version > STATE_DB_SCHEMA_VERSION:
                    continue
                record = applied.get(migration.version)
                if record is not None:
                    if record.checksum != migration.checksum:
                        raise StateDBMigrationError(
                            "migration checksum mismatch for version "
                            f"{migration.version}: db={record.checksum} code={migration.checksum}"
                        )
                    continue

                applied_at = _utc_now_iso()
                with self.transaction(conn=conn, immediate=True) as tx:
                    for statement in migration.statements:
                        self._execute_with_retry(
                            tx, statement, (), operation=f"apply migration {migration.version}"
                        )
                    self._execute_with_retry(
                        tx,
                        """
                        INSERT INTO schema_versions (version, name, checksum, applied_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (migration.version, migration.name, migration.checksum, applied_at),
                        operation=f"record migration {migration.version}",
                    )
                applied[migration.version] = MigrationRecord(
                    version=migration.version,
                    name=migration.name,
                    checksum=migration.checksum,
                    applied_at=applied_at,
                )

            self._migrated = True
            return self.schema_version(conn=conn)

    def ensure_migrated(self) -> None:
        """Run ``migrate`` once per instance."""

        if not self._migrated:
            self.migrate()

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions",
            conn=conn,
        )
        if row is None:
            return 0
        value = row["version"]
        if not isinstance(value, int):
            raise StateDBMigrationError("schema_versions.version must be an integer")
        return value

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return sorted(self._load_applied_migrations(conn).values(), key=lambda r: r.version)

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a parameterized statement and return affected row count."""

        if conn is not None:
            return self._execute_with_retry(conn, sql, params, operation="execute statement").rowcount

        with self.transaction(immediate=True) as tx:
            return self._execute_with_retry(tx, sql, params, operation="execute statement").rowcount

    def insert(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute an INSERT and return the new row id."""

        if conn is not None:
            cursor = self._execute_with_retry(conn, sql, params, operation="insert row")
            return int(cursor.lastrowid or 0)

        with self.transaction(immediate=True) as tx:
            cursor = self._execute_with_retry(tx, sql, params, operation="insert row")
            return int(cursor.lastrowid or 0)

    def executemany(
        self,
        sql: str,
        params_iter: Iterable[SQLParams],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a parameterized statement for a sequence of parameter tuples."""

        params_list = [tuple(params) for params in params_iter]
        if conn is not None:
            return self._executemany_with_retry(conn, sql, params_list, operation="execute many")

        with self.transaction(immediate=True) as tx:
            return self._executemany_with_retry(tx, sql, params_list, operation="execute many")

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        """Run a query and return rows as typed dictionaries."""

        if conn is not None:
            cursor = self._execute_with_retry(conn, sql, params, operation="query all")
            return [_row_to_dict(row) for row in cursor.fetchall()]

        with self.connection() as owned_conn:
            cursor = self._execute_with_retry(owned_conn, sql, params, operation="query all")
            return [_row_to_dict(row) for row in cursor.fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        """Run a query and return the first row as a typed dictionary."""

        if conn is not None:
            row = self._execute_with_retry(conn, sql, params, operation="query one").fetchone()
            return None if row is None else _row_to_dict(row)

        with self.connection() as owned_conn:
            row = self._execute_with_retry(owned_conn, sql, params, operation="query one").fetchone()
            return None if row is None else _row_to_dict(row)

    def backup(self, destination: str | Path) -> Path:
        """Create a consistent snapshot using SQLite backup API."""

        destination_path = Path(destination).expanduser()
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as source:
            target = sqlite3.connect(destination_path, isolation_level=None)
            try:
                source.backup(target)
            finally:
                target.close()
        return destination_path

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def __enter__(self) -> StateDB:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb

    def _configure_connection(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        journal_row = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        if journal_row is None or str(journal_row[0]).lower() != "wal":
            raise StateDBError(f"failed to enable WAL journal mode for {self._path}")

    def _load_applied_migrations(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        cursor = self._execute_with_retry(
            conn,
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version ASC",
            (),
            operation="load schema_versions",
        )
        out: dict[int, MigrationRecord] = {}
        for row in cursor.fetchall():
            if not isinstance(row["version"], int):
                raise StateDBMigrationError("schema_versions.version must be integer")
            out[row["version"]] = MigrationRecord(
                version=row["version"],
                name=str(row["name"]),
                checksum=str(row["checksum"]),
                applied_at=str(row["applied_at"]),
            )
        return out

    def _validate_migration_chain(self, target_version: int) -> None:
        migration_versions = {migration.version for migration in _MIGRATIONS}
        if target_version > max(migration_versions, default=0):
            raise StateDBMigrationError(
                "schema target exceeds known migrations "
                f"(target={target_version}, known={max(migration_versions, default=0)})"
            )
        for version in range(1, target_version + 1):
            if version not in migration_versions:
                raise StateDBMigrationError(f"missing migration for schema version {version}")

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self._savepoint_counter}"

    def _execute_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StateDBBusyError(f"{operation} exhausted retries unexpectedly")

    def _executemany_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params_list: Sequence[SQLParams],
        *,
        operation: str,
    ) -> int:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.executemany(sql, params_list).rowcount
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StateDBBusyError(f"{operation} exhausted retries unexpectedly")

    def _is_busy_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _BUSY_SUBSTRINGS)

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> None:
        if self._is_corruption_error(exc):
            raise StateDBCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Run `StateDB.integrity_check()` and restore from `StateDB.backup(...)` if needed."
            ) from exc
        if self._is_busy_error(exc):
            raise StateDBBusyError(
                f"{operation} hit SQLITE_BUSY for {self._path} after "
                f"{self._busy_retry_limit + 1} attempt(s): {exc}"
            ) from exc
        raise StateDBError(f"{operation} failed for {self._path}: {exc}") from exc


def _row_to_dict(row: sqlite3.Row) -> dict[str, RowValue]:
    return {str(key): row[key] for key in row.keys()}


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persistence payloads."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
]
