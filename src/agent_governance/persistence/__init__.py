"""Persistence layer: SQLite state DB and repository plumbing."""

from agent_governance.persistence.repository import BaseRepo, Page
from agent_governance.persistence.state_db import (
    MigrationRecord,
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
    canonical_json,
)

__all__ = [
    "BaseRepo",
    "MigrationRecord",
    "Page",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
]
