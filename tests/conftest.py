"""Shared fixtures: a migrated state DB per test and the audit log over it."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from agent_governance.governance.audit import AuditLog
from agent_governance.persistence.state_db import StateDB

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def db(tmp_path: Path) -> StateDB:
    state_db = StateDB(tmp_path / "state" / "governance.sqlite3", busy_timeout_ms=1_000)
    state_db.migrate()
    return state_db


@pytest.fixture
def audit(db: StateDB) -> AuditLog:
    return AuditLog(db)
