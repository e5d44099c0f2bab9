"""
agent-governance — retention policy engine

File: src/agent_governance/tracing/retention.py

Purpose
- Per-tenant data-lifecycle rules over the trace store.

Functional requirements
- A tenant without an explicit policy is never purged automatically; the
  90-day/full defaults only describe what such a tenant would get.
- ``enforce_policy`` deletes traces with ``started_at < now - retention_days``
  in one transaction (annotations cascade) together with its audit entry, so a
  failure leaves nothing half-deleted and a re-run is safe.
- A second run with no newly-aged data deletes nothing.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Final

import structlog

from agent_governance.domain.enums import AuditEventType, SamplingStrategy, StorageMode
from agent_governance.errors import ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
from agent_governance.persistence.repository import (
    BaseRepo,
    JSONValue,
    as_non_empty_str,
    iso8601z,
    row_int,
    row_text,
    utc_now,
)
from agent_governance.persistence.state_db import StateDB
from agent_governance.tracing.store import TraceStore

DEFAULT_RETENTION_DAYS: Final[int] = 90
DEFAULT_SAMPLE_RATE: Final[float] = 0.1


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    tenant_id: str
    retention_days: int = DEFAULT_RETENTION_DAYS
    sampling_strategy: SamplingStrategy = SamplingStrategy.FULL
    storage_mode: StorageMode = StorageMode.FULL
    created_at: str | None = None
    updated_at: str | None = None

    def cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.retention_days)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tenant_id": self.tenant_id,
            "retention_days": self.retention_days,
            "sampling_strategy": self.sampling_strategy.value,
            "storage_mode": self.storage_mode.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class RetentionResult:
    tenant_id: str
    deleted: int
    cutoff: str | None
    oldest_remaining: str | None
    policy_applied: bool

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tenant_id": self.tenant_id,
            "deleted": self.deleted,
            "cutoff": self.cutoff,
            "oldest_remaining": self.oldest_remaining,
            "policy_applied": self.policy_applied,
        }


@dataclass(frozen=True, slots=True)
class CleanupCandidate:
    tenant_id: str
    old_trace_count: int
    retention_days: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tenant_id": self.tenant_id,
            "old_trace_count": self.old_trace_count,
            "retention_days": self.retention_days,
        }


@dataclass(frozen=True, slots=True)
class RetentionStats:
    total_policies: int
    by_strategy: dict[str, int]
    average_retention_days: int
    tenants_needing_cleanup: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "total_policies": self.total_policies,
            "by_strategy": dict(self.by_strategy),
            "average_retention_days": self.average_retention_days,
            "tenants_needing_cleanup": self.tenants_needing_cleanup,
        }


def should_retain_trace(
    policy: RetentionPolicy,
    *,
    has_error: bool,
    sample_rate: float = DEFAULT_SAMPLE_RATE,
    rng: Callable[[], float] = random.random,
) -> bool:
    """Decide at write time whether a trace is kept under ``policy``'s sampling strategy."""

    if policy.sampling_strategy is SamplingStrategy.FULL:
        return True
    if policy.sampling_strategy is SamplingStrategy.ERRORS_ONLY:
        return has_error
    return has_error or rng() < sample_rate


class RetentionEngine(BaseRepo):
    def __init__(
        self,
        db: StateDB,
        audit: AuditLog,
        store: TraceStore,
        *,
        default_days: int = DEFAULT_RETENTION_DAYS,
        sample_rate: float = DEFAULT_SAMPLE_RATE,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(db)
        if default_days <= 0:
            raise ValueError("default_days must be > 0")
        if not 0.0 <= sample_rate <= 1.0:
            raise ValueError("sample_rate must be in [0, 1]")
        self._audit = audit
        self._store = store
        self._default_days = default_days
        self._sample_rate = sample_rate
        self._clock = clock if clock is not None else utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def set_policy(
        self,
        tenant_id: str,
        *,
        retention_days: int | None = None,
        sampling_strategy: SamplingStrategy | str | None = None,
        storage_mode: StorageMode | str | None = None,
        actor: str | None = None,
    ) -> RetentionPolicy:
        tenant = as_non_empty_str(tenant_id, "tenant_id")
        days = self._default_days if retention_days is None else retention_days
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError("retention_days: must be a positive integer")
        strategy = _parse_strategy(sampling_strategy)
        mode = _parse_storage_mode(storage_mode)
        now = iso8601z(self._clock())

        with self._db.transaction() as conn:
            self._db.execute(
                """
                INSERT INTO tenant_retention_policies (
                    tenant_id, retention_days, sampling_strategy, storage_mode, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET
                    retention_days = excluded.retention_days,
                    sampling_strategy = excluded.sampling_strategy,
                    storage_mode = excluded.storage_mode,
                    updated_at = excluded.updated_at
                """,
                (tenant, days, strategy.value, mode.value, now, now),
                conn=conn,
            )
            self._audit.log(
                AuditEventType.CONFIG_CHANGE,
                tenant_id=tenant,
                actor=actor,
                details=AuditDetails(
                    action="retention_policy_set",
                    target_id=tenant,
                    data={
                        "retention_days": days,
                        "sampling_strategy": strategy.value,
                        "storage_mode": mode.value,
                    },
                ),
                conn=conn,
            )
            row = self._db.query_one(
                "SELECT * FROM tenant_retention_policies WHERE tenant_id = ?", (tenant,), conn=conn
            )

        self._logger.info(
            "retention_policy_set",
            tenant_id=tenant,
            retention_days=days,
            sampling_strategy=strategy.value,
            storage_mode=mode.value,
        )
        if row is None:
            raise ValidationError(f"retention policy for {tenant} was not persisted")
        return _policy_from_row(row)

    def get_policy(self, tenant_id: str) -> RetentionPolicy | None:
        row = self._db.query_one(
            "SELECT * FROM tenant_retention_policies WHERE tenant_id = ?",
            (as_non_empty_str(tenant_id, "tenant_id"),),
        )
        return None if row is None else _policy_from_row(row)

    def get_policy_or_default(self, tenant_id: str) -> RetentionPolicy:
        policy = self.get_policy(tenant_id)
        if policy is not None:
            return policy
        return RetentionPolicy(tenant_id=tenant_id, retention_days=self._default_days)

    def delete_policy(self, tenant_id: str, *, actor: str | None = None) -> bool:
        tenant = as_non_empty_str(tenant_id, "tenant_id")
        with self._db.transaction() as conn:
            deleted = self._db.execute(
                "DELETE FROM tenant_retention_policies WHERE tenant_id = ?", (tenant,), conn=conn
            )
            if deleted:
                self._audit.log(
                    AuditEventType.CONFIG_CHANGE,
                    tenant_id=tenant,
                    actor=actor,
                    details=AuditDetails(action="retention_policy_deleted", target_id=tenant),
                    conn=conn,
                )
        return deleted > 0

    def list_policies(self) -> list[RetentionPolicy]:
        rows = self._db.query_all("SELECT * FROM tenant_retention_policies ORDER BY tenant_id")
        return [_policy_from_row(row) for row in rows]

    def enforce_policy(
        self, tenant_id: str, now: datetime | None = None, *, actor: str | None = None
    ) -> RetentionResult:
        tenant = as_non_empty_str(tenant_id, "tenant_id")
        policy = self.get_policy(tenant)
        if policy is None:
            self._logger.debug("retention_skipped_no_policy", tenant_id=tenant)
            return RetentionResult(
                tenant_id=tenant,
                deleted=0,
                cutoff=None,
                oldest_remaining=self._store.oldest_started_at(tenant),
                policy_applied=False,
            )

        cutoff = policy.cutoff(now if now is not None else self._clock())
        with self._db.transaction() as conn:
            deleted = self._store.delete_older_than(tenant, cutoff, conn=conn)
            oldest = self._store.oldest_started_at(tenant, conn=conn)
            self._audit.log(
                AuditEventType.RETENTION_ENFORCED,
                tenant_id=tenant,
                actor=actor,
                details=AuditDetails(
                    action="enforce",
                    target_id=tenant,
                    data={
                        "deleted": deleted,
                        "cutoff": iso8601z(cutoff),
                        "retention_days": policy.retention_days,
                        "oldest_remaining": oldest,
                    },
                ),
                conn=conn,
            )

        self._logger.info(
            "retention_enforced",
            tenant_id=tenant,
            deleted=deleted,
            cutoff=iso8601z(cutoff),
            retention_days=policy.retention_days,
        )
        return RetentionResult(
            tenant_id=tenant,
            deleted=deleted,
            cutoff=iso8601z(cutoff),
            oldest_remaining=oldest,
            policy_applied=True,
        )

    def enforce_all(
        self, now: datetime | None = None, *, actor: str | None = None
    ) -> list[RetentionResult]:
        """Enforce every explicit policy; tenants without one are untouched."""

        moment = now if now is not None else self._clock()
        return [
            self.enforce_policy(policy.tenant_id, moment, actor=actor)
            for policy in self.list_policies()
        ]

    def tenants_needing_cleanup(self, now: datetime | None = None) -> list[CleanupCandidate]:
        moment = now if now is not None else self._clock()
        candidates: list[CleanupCandidate] = []
        for policy in self.list_policies():
            count = self._store.count_older_than(policy.tenant_id, policy.cutoff(moment))
            if count > 0:
                candidates.append(
                    CleanupCandidate(
                        tenant_id=policy.tenant_id,
                        old_trace_count=count,
                        retention_days=policy.retention_days,
                    )
                )
        return candidates

    def should_retain(
        self, tenant_id: str, *, has_error: bool, rng: Callable[[], float] = random.random
    ) -> bool:
        return should_retain_trace(
            self.get_policy_or_default(tenant_id),
            has_error=has_error,
            sample_rate=self._sample_rate,
            rng=rng,
        )

    def get_stats(self, now: datetime | None = None) -> RetentionStats:
        policies = self.list_policies()
        by_strategy: dict[str, int] = {strategy.value: 0 for strategy in SamplingStrategy}
        for policy in policies:
            by_strategy[policy.sampling_strategy.value] += 1
        average = (
            round(sum(policy.retention_days for policy in policies) / len(policies))
            if policies
            else 0
        )
        return RetentionStats(
            total_policies=len(policies),
            by_strategy=by_strategy,
            average_retention_days=average,
            tenants_needing_cleanup=len(self.tenants_needing_cleanup(now)),
        )


def _parse_strategy(value: SamplingStrategy | str | None) -> SamplingStrategy:
    if value is None:
        return SamplingStrategy.FULL
    try:
        return SamplingStrategy(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in SamplingStrategy)
        raise ValidationError(f"sampling_strategy: expected one of: {allowed}") from exc


def _parse_storage_mode(value: StorageMode | str | None) -> StorageMode:
    if value is None:
        return StorageMode.FULL
    try:
        return StorageMode(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in StorageMode)
        raise ValidationError(f"storage_mode: expected one of: {allowed}") from exc


def _policy_from_row(row: Mapping[str, Any]) -> RetentionPolicy:
    return RetentionPolicy(
        tenant_id=row_text(row, "tenant_id", "tenant_retention_policies.tenant_id"),
        retention_days=row_int(row, "retention_days", DEFAULT_RETENTION_DAYS),
        sampling_strategy=SamplingStrategy(
            row_text(row, "sampling_strategy", "tenant_retention_policies.sampling_strategy")
        ),
        storage_mode=StorageMode(
            row_text(row, "storage_mode", "tenant_retention_policies.storage_mode")
        ),
        created_at=row_text(row, "created_at", "tenant_retention_policies.created_at"),
        updated_at=row_text(row, "updated_at", "tenant_retention_policies.updated_at"),
    )


__all__ = [
    "DEFAULT_RETENTION_DAYS",
    "DEFAULT_SAMPLE_RATE",
    "CleanupCandidate",
    "RetentionEngine",
    "RetentionPolicy",
    "RetentionResult",
    "RetentionStats",
    "should_retain_trace",
]
