"""
Per-tenant budget tracking and pre-execution cost forecasting.

Semantics:
- ``limit_usd`` is the nominal period budget.
- ``soft_limit_usd`` is an alert threshold; crossing it is a warning only.
- ``hard_limit_usd`` (``None`` when not enforced) is authoritative for blocking.
- The enforcement ceiling is the hard limit when set, otherwise the limit.

Spend is recorded with a single ``UPDATE ... SET spent_usd = spent_usd + ?`` so
concurrent requests never lose increments. Forecasts and checks never mutate
spend.
"""

from __future__ import annotations

import math
import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

import structlog

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import BudgetExceededError, NotFoundError, ValidationError
from agent_governance.governance.audit import AuditDetails, AuditLog
from agent_governance.governance.pricing import CostEstimate, estimate_cost, round_usd
from agent_governance.persistence.repository import (
    BaseRepo,
    Page,
    as_non_empty_str,
    as_non_negative_float,
    as_utc_datetime,
    iso8601z,
    row_float,
    row_int,
    row_text,
    utc_now,
)
from agent_governance.persistence.state_db import StateDB

_SECONDS_PER_DAY = 86_400


class BudgetCheckReason(StrEnum):
    OK = "ok"
    NO_BUDGET_SET = "no_budget_set"
    PERIOD_EXPIRED = "period_expired"
    BUDGET_EXCEEDED = "budget_exceeded"
    SOFT_LIMIT_EXCEEDED = "soft_limit_exceeded"


@dataclass(frozen=True, slots=True)
class TenantBudget:
    tenant_id: str
    limit_usd: float
    spent_usd: float
    period_start: datetime
    period_end: datetime
    soft_limit_usd: float | None
    hard_limit_usd: float | None
    created_at: str
    updated_at: str

    @property
    def ceiling_usd(self) -> float:
        return self.hard_limit_usd if self.hard_limit_usd is not None else self.limit_usd

    @property
    def remaining_usd(self) -> float:
        return round_usd(self.ceiling_usd - self.spent_usd)

    @property
    def percent_used(self) -> float:
        return (self.spent_usd / self.limit_usd) * 100.0

    @property
    def hard_limit_enforced(self) -> bool:
        return self.hard_limit_usd is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "limit_usd": self.limit_usd,
            "spent_usd": self.spent_usd,
            "remaining_usd": self.remaining_usd,
            "percent_used": round(self.percent_used, 4),
            "period_start": iso8601z(self.period_start),
            "period_end": iso8601z(self.period_end),
            "soft_limit_usd": self.soft_limit_usd,
            "hard_limit_usd": self.hard_limit_usd,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class BudgetCheck:
    allowed: bool
    requested: float
    remaining: float
    remaining_after: float
    percent_used: float
    reason: BudgetCheckReason
    warning: str | None = None
    error: str | None = None
    budget: TenantBudget | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "requested": self.requested,
            "remaining": _finite_or_none(self.remaining),
            "remaining_after": _finite_or_none(self.remaining_after),
            "percent_used": round(self.percent_used, 4),
            "reason": self.reason.value,
            "warning": self.warning,
            "error": self.error,
            "budget": None if self.budget is None else self.budget.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class CostForecast:
    tenant_id: str
    estimated_cost: float
    input_cost: float
    output_cost: float
    input_tokens: int
    output_tokens: int
    model: str
    provider: str | None
    remaining_budget: float
    would_exceed_budget: bool
    budget_allowed: bool
    warning: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "tenant_id": self.tenant_id,
            "estimated_cost": self.estimated_cost,
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "model": self.model,
            "provider": self.provider,
            "remaining_budget": _finite_or_none(self.remaining_budget),
            "would_exceed_budget": self.would_exceed_budget,
            "budget_allowed": self.budget_allowed,
            "warning": self.warning,
        }


@dataclass(frozen=True, slots=True)
class BudgetStats:
    budget: TenantBudget
    percent_used: float
    average_daily_spend: float
    projected_period_spend: float
    days_remaining: int

    def to_dict(self) -> dict[str, object]:
        return {
            "budget": self.budget.to_dict(),
            "percent_used": round(self.percent_used, 4),
            "average_daily_spend": self.average_daily_spend,
            "projected_period_spend": self.projected_period_spend,
            "days_remaining": self.days_remaining,
        }


class BudgetManager(BaseRepo):
    """Per-tenant spend limits, checks, and forecasts."""

    def __init__(
        self,
        db: StateDB,
        audit: AuditLog,
        *,
        alert_threshold: float = 0.8,
        hard_limit: bool = True,
        default_max_output_tokens: int = 1_000,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        super().__init__(db)
        if not 0.0 < alert_threshold <= 1.0:
            raise ValueError("alert_threshold must be in (0, 1]")
        if default_max_output_tokens <= 0:
            raise ValueError("default_max_output_tokens must be > 0")
        self._audit = audit
        self._alert_threshold = alert_threshold
        self._hard_limit = hard_limit
        self._default_max_output_tokens = default_max_output_tokens
        self._clock = clock if clock is not None else utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def set_budget(
        self,
        tenant_id: str,
        *,
        limit_usd: float,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        soft_limit_usd: float | None = None,
        hard_limit_usd: float | None = None,
        hard_limit: bool | None = None,
        actor: str | None = None,
    ) -> TenantBudget:
        """Create or update a budget; ``spent_usd`` is preserved on update."""

        tenant = as_non_empty_str(tenant_id, "tenant_id")
        limit = as_non_negative_float(limit_usd, "limit_usd")
        if limit <= 0:
            raise ValidationError("limit_usd: must be > 0")

        default_start, default_end = _month_bounds(self._clock())
        start = as_utc_datetime(period_start, "period_start") if period_start is not None else default_start
        end = as_utc_datetime(period_end, "period_end") if period_end is not None else default_end
        if end <= start:
            raise ValidationError("period_end: must be after period_start")

        soft = (
            as_non_negative_float(soft_limit_usd, "soft_limit_usd")
            if soft_limit_usd is not None
            else round_usd(limit * self._alert_threshold)
        )
        enforce_hard = self._hard_limit if hard_limit is None else hard_limit
        if hard_limit_usd is not None:
            hard: float | None = as_non_negative_float(hard_limit_usd, "hard_limit_usd")
            if hard <= 0:
                raise ValidationError("hard_limit_usd: must be > 0")
        elif enforce_hard:
            hard = limit
        else:
            hard = None
        if hard is not None and soft > hard:
            raise ValidationError("soft_limit_usd: must be <= hard_limit_usd")

        now = iso8601z(self._clock())
        with self._db.transaction() as conn:
            self._db.execute(
                """
                INSERT INTO tenant_budgets (
                    tenant_id, limit_usd, spent_usd, period_start, period_end,
                    soft_limit_usd, hard_limit_usd, created_at, updated_at
                ) VALUES (?, ?, 0, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET
                    limit_usd = excluded.limit_usd,
                    period_start = excluded.period_start,
                    period_end = excluded.period_end,
                    soft_limit_usd = excluded.soft_limit_usd,
                    hard_limit_usd = excluded.hard_limit_usd,
                    updated_at = excluded.updated_at
                """,
                (tenant, limit, iso8601z(start), iso8601z(end), soft, hard, now, now),
                conn=conn,
            )
            self._audit.log(
                AuditEventType.BUDGET_UPDATED,
                tenant_id=tenant,
                actor=actor,
                details=AuditDetails(
                    action="set",
                    target_id=tenant,
                    data={
                        "limit_usd": limit,
                        "soft_limit_usd": soft,
                        "hard_limit_usd": hard,
                        "period_start": iso8601z(start),
                        "period_end": iso8601z(end),
                    },
                ),
                conn=conn,
            )
            budget = self._get(tenant, conn=conn)
        if budget is None:
            raise NotFoundError("budget", tenant)
        self._logger.info(
            "budget_set", tenant_id=tenant, limit_usd=limit, soft_limit_usd=soft, hard_limit_usd=hard
        )
        return budget

    def get_budget(self, tenant_id: str) -> TenantBudget | None:
        return self._get(as_non_empty_str(tenant_id, "tenant_id"))

    def require_budget(self, tenant_id: str) -> TenantBudget:
        budget = self.get_budget(tenant_id)
        if budget is None:
            raise NotFoundError("budget", tenant_id)
        return budget

    def delete_budget(self, tenant_id: str, *, actor: str | None = None) -> bool:
        tenant = as_non_empty_str(tenant_id, "tenant_id")
        with self._db.transaction() as conn:
            deleted = self._db.execute(
                "DELETE FROM tenant_budgets WHERE tenant_id = ?", (tenant,), conn=conn
            )
            if deleted:
                self._audit.log(
                    AuditEventType.BUDGET_UPDATED,
                    tenant_id=tenant,
                    actor=actor,
                    details=AuditDetails(action="delete", target_id=tenant),
                    conn=conn,
                )
        return deleted > 0

    def list_budgets(self, *, limit: int = 100, offset: int = 0) -> Page[TenantBudget]:
        self._validate_page(limit, offset)
        total_row = self._db.query_one("SELECT COUNT(*) AS total FROM tenant_budgets")
        rows = self._db.query_all(
            "SELECT * FROM tenant_budgets ORDER BY updated_at DESC, tenant_id ASC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return Page(
            items=tuple(_budget_from_row(row) for row in rows),
            total=0 if total_row is None else row_int(total_row, "total"),
            limit=limit,
            offset=offset,
        )

    def check_budget(
        self, tenant_id: str, amount: float = 0.0, *, now: datetime | None = None
    ) -> BudgetCheck:
        requested = as_non_negative_float(amount, "amount")
        budget = self.get_budget(tenant_id)
        return _evaluate(budget, requested, self._resolve_now(now))

    def forecast_cost(
        self,
        tenant_id: str,
        *,
        prompt_size: int,
        model: str,
        max_output_tokens: int | None = None,
        provider: str | None = None,
        now: datetime | None = None,
    ) -> CostForecast:
        """Estimate the cost of a request against the tenant's remaining budget.

        ``prompt_size`` is an input token count. Never mutates spend.
        """

        tenant = as_non_empty_str(tenant_id, "tenant_id")
        model_name = as_non_empty_str(model, "model")
        output_tokens = (
            self._default_max_output_tokens if max_output_tokens is None else max_output_tokens
        )
        estimate = estimate_cost(model_name, input_tokens=prompt_size, output_tokens=output_tokens)
        return _forecast(tenant, estimate, provider, self._get(tenant), self._resolve_now(now))

    def check_before_execution(
        self,
        tenant_id: str,
        *,
        prompt_size: int,
        model: str,
        max_output_tokens: int | None = None,
        provider: str | None = None,
    ) -> CostForecast:
        """Forecast and raise ``BudgetExceededError`` when the hard limit would block."""

        forecast = self.forecast_cost(
            tenant_id,
            prompt_size=prompt_size,
            model=model,
            max_output_tokens=max_output_tokens,
            provider=provider,
        )
        if not forecast.budget_allowed:
            self._logger.warning(
                "budget_blocked_execution",
                tenant_id=forecast.tenant_id,
                estimated_cost=forecast.estimated_cost,
                remaining_budget=_finite_or_none(forecast.remaining_budget),
            )
            raise BudgetExceededError(
                f"Budget exceeded: estimated cost ${forecast.estimated_cost:.4f}, "
                f"remaining ${forecast.remaining_budget:.4f}",
                tenant_id=forecast.tenant_id,
                result=forecast,
            )
        return forecast

    def record_spend(
        self,
        tenant_id: str,
        cost_usd: float,
        *,
        trace_id: str | None = None,
        description: str | None = None,
    ) -> TenantBudget | None:
        """Atomically add ``cost_usd`` to the tenant's spend.

        Returns the updated budget, or ``None`` when the tenant has no budget.
        """

        tenant = as_non_empty_str(tenant_id, "tenant_id")
        cost = as_non_negative_float(cost_usd, "cost_usd")
        current = as_utc_datetime(self._clock(), "now")
        now = iso8601z(current)
        with self._db.transaction() as conn:
            self._roll_expired_period(tenant, current, conn=conn)
            updated = self._db.execute(
                """
                UPDATE tenant_budgets
                SET spent_usd = spent_usd + ?, updated_at = ?
                WHERE tenant_id = ?
                """,
                (cost, now, tenant),
                conn=conn,
            )
            if updated == 0:
                return None
            budget = self._get(tenant, conn=conn)
            if budget is None:
                return None
            previous = budget.spent_usd - cost
            event = _crossing_event(budget, previous)
            if event is not None:
                self._audit.log(
                    event,
                    tenant_id=tenant,
                    trace_id=trace_id,
                    details=AuditDetails(
                        action="record_spend",
                        target_id=tenant,
                        data={
                            "cost_usd": cost,
                            "spent_usd": budget.spent_usd,
                            "limit_usd": budget.limit_usd,
                            "soft_limit_usd": budget.soft_limit_usd,
                            "hard_limit_usd": budget.hard_limit_usd,
                            "percent_used": round(budget.percent_used, 4),
                            "description": description,
                        },
                    ),
                    conn=conn,
                )
        if event is not None:
            self._logger.warning(
                event.value, tenant_id=tenant, spent_usd=budget.spent_usd, limit_usd=budget.limit_usd
            )
        return budget

    def _roll_expired_period(self, tenant_id: str, now: datetime, *, conn: sqlite3.Connection) -> None:
        """Start the period containing ``now`` when the stored one has ended."""

        budget = self._get(tenant_id, conn=conn)
        if budget is None or now <= budget.period_end:
            return
        start, end = _next_period(budget.period_start, budget.period_end, now)
        self._db.execute(
            """
            UPDATE tenant_budgets
            SET spent_usd = 0, period_start = ?, period_end = ?, updated_at = ?
            WHERE tenant_id = ? AND period_end = ?
            """,
            (iso8601z(start), iso8601z(end), iso8601z(now), tenant_id, iso8601z(budget.period_end)),
            conn=conn,
        )
        self._audit.log(
            AuditEventType.BUDGET_UPDATED,
            tenant_id=tenant_id,
            details=AuditDetails(
                action="period_rolled",
                target_id=tenant_id,
                data={
                    "previous_period_end": iso8601z(budget.period_end),
                    "previous_spent_usd": budget.spent_usd,
                    "period_start": iso8601z(start),
                    "period_end": iso8601z(end),
                },
            ),
            conn=conn,
        )
        self._logger.info(
            "budget_period_rolled", tenant_id=tenant_id, period_start=iso8601z(start), period_end=iso8601z(end)
        )

    def reset_spend(
        self,
        tenant_id: str,
        *,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        actor: str | None = None,
    ) -> TenantBudget:
        """Start a new period with zero spend."""

        tenant = as_non_empty_str(tenant_id, "tenant_id")
        default_start, default_end = _month_bounds(self._clock())
        start = as_utc_datetime(period_start, "period_start") if period_start is not None else default_start
        end = as_utc_datetime(period_end, "period_end") if period_end is not None else default_end
        if end <= start:
            raise ValidationError("period_end: must be after period_start")
        with self._db.transaction() as conn:
            updated = self._db.execute(
                """
                UPDATE tenant_budgets
                SET spent_usd = 0, period_start = ?, period_end = ?, updated_at = ?
                WHERE tenant_id = ?
                """,
                (iso8601z(start), iso8601z(end), iso8601z(self._clock()), tenant),
                conn=conn,
            )
            if updated == 0:
                raise NotFoundError("budget", tenant)
            self._audit.log(
                AuditEventType.BUDGET_UPDATED,
                tenant_id=tenant,
                actor=actor,
                details=AuditDetails(
                    action="reset",
                    target_id=tenant,
                    data={"period_start": iso8601z(start), "period_end": iso8601z(end)},
                ),
                conn=conn,
            )
            budget = self._get(tenant, conn=conn)
        if budget is None:
            raise NotFoundError("budget", tenant)
        return budget

    def get_stats(self, tenant_id: str, now: datetime | None = None) -> BudgetStats | None:
        budget = self.get_budget(tenant_id)
        if budget is None:
            return None
        current = self._resolve_now(now)
        elapsed_days = max(1, _ceil_days(current - budget.period_start))
        days_remaining = max(0, _ceil_days(budget.period_end - current))
        average = budget.spent_usd / elapsed_days
        return BudgetStats(
            budget=budget,
            percent_used=budget.percent_used,
            average_daily_spend=round_usd(average),
            projected_period_spend=round_usd(budget.spent_usd + average * days_remaining),
            days_remaining=days_remaining,
        )

    def over_budget_tenants(self) -> list[TenantBudget]:
        rows = self._db.query_all(
            """
            SELECT * FROM tenant_budgets
            WHERE spent_usd >= COALESCE(hard_limit_usd, limit_usd)
            ORDER BY (spent_usd - COALESCE(hard_limit_usd, limit_usd)) DESC, tenant_id ASC
            """
        )
        return [_budget_from_row(row) for row in rows]

    def approaching_limit_tenants(self, threshold: float | None = None) -> list[TenantBudget]:
        ratio = self._alert_threshold if threshold is None else threshold
        if not 0.0 < ratio <= 1.0:
            raise ValidationError("threshold: must be in (0, 1]")
        rows = self._db.query_all(
            """
            SELECT * FROM tenant_budgets
            WHERE (spent_usd / limit_usd) >= ? AND spent_usd < COALESCE(hard_limit_usd, limit_usd)
            ORDER BY (spent_usd / limit_usd) DESC, tenant_id ASC
            """,
            (ratio,),
        )
        return [_budget_from_row(row) for row in rows]

    def _get(self, tenant_id: str, *, conn: sqlite3.Connection | None = None) -> TenantBudget | None:
        row = self._db.query_one(
            "SELECT * FROM tenant_budgets WHERE tenant_id = ?", (tenant_id,), conn=conn
        )
        return None if row is None else _budget_from_row(row)

    def _resolve_now(self, now: datetime | None) -> datetime:
        return as_utc_datetime(now if now is not None else self._clock(), "now")


def _evaluate(budget: TenantBudget | None, requested: float, now: datetime) -> BudgetCheck:
    if budget is None:
        return BudgetCheck(
            allowed=True,
            requested=requested,
            remaining=math.inf,
            remaining_after=math.inf,
            percent_used=0.0,
            reason=BudgetCheckReason.NO_BUDGET_SET,
        )

    if now > budget.period_end:
        allowed = not budget.hard_limit_enforced
        return BudgetCheck(
            allowed=allowed,
            requested=requested,
            remaining=0.0,
            remaining_after=0.0,
            percent_used=budget.percent_used,
            reason=BudgetCheckReason.PERIOD_EXPIRED,
            warning="Budget period has expired",
            error=None if allowed else "Budget period has expired",
            budget=budget,
        )

    projected = budget.spent_usd + requested
    remaining = budget.remaining_usd
    remaining_after = round_usd(budget.ceiling_usd - projected)
    base = {
        "requested": requested,
        "remaining": remaining,
        "remaining_after": remaining_after,
        "percent_used": budget.percent_used,
        "budget": budget,
    }

    if budget.hard_limit_usd is not None and projected > budget.hard_limit_usd:
        return BudgetCheck(
            allowed=False,
            reason=BudgetCheckReason.BUDGET_EXCEEDED,
            error=f"Budget exceeded: requested ${requested:.4f}, remaining ${remaining:.4f}",
            **base,
        )
    if projected > budget.limit_usd:
        return BudgetCheck(
            allowed=True,
            reason=BudgetCheckReason.BUDGET_EXCEEDED,
            warning="Budget exceeded - soft limit",
            **base,
        )
    if budget.soft_limit_usd is not None and projected >= budget.soft_limit_usd:
        percent = (projected / budget.limit_usd) * 100.0
        return BudgetCheck(
            allowed=True,
            reason=BudgetCheckReason.SOFT_LIMIT_EXCEEDED,
            warning=f"Budget usage at {percent:.1f}% - approaching limit",
            **base,
        )
    return BudgetCheck(allowed=True, reason=BudgetCheckReason.OK, **base)


def _forecast(
    tenant_id: str,
    estimate: CostEstimate,
    provider: str | None,
    budget: TenantBudget | None,
    now: datetime,
) -> CostForecast:
    estimated = estimate.total_cost
    remaining = math.inf
    would_exceed = False
    allowed = True
    warning: str | None = None

    if budget is not None:
        if now > budget.period_end:
            remaining = 0.0
            would_exceed = estimated > 0
            allowed = not budget.hard_limit_enforced
            warning = "Budget period has expired"
        else:
            remaining = budget.remaining_usd
            would_exceed = estimated > remaining
            if would_exceed:
                if budget.hard_limit_enforced:
                    allowed = False
                else:
                    warning = (
                        f"Estimated cost (${estimated:.4f}) exceeds remaining budget "
                        f"(${remaining:.4f})"
                    )
            elif (
                budget.soft_limit_usd is not None
                and budget.spent_usd + estimated > budget.soft_limit_usd
            ):
                threshold = (budget.soft_limit_usd / budget.limit_usd) * 100.0
                warning = f"This request will bring budget usage above {threshold:.0f}% threshold"

    return CostForecast(
        tenant_id=tenant_id,
        estimated_cost=estimated,
        input_cost=estimate.input_cost,
        output_cost=estimate.output_cost,
        input_tokens=estimate.input_tokens,
        output_tokens=estimate.output_tokens,
        model=estimate.model,
        provider=provider,
        remaining_budget=remaining,
        would_exceed_budget=would_exceed,
        budget_allowed=allowed,
        warning=warning,
    )


def _crossing_event(budget: TenantBudget, previous_spent: float) -> AuditEventType | None:
    ceiling = budget.ceiling_usd
    if previous_spent <= ceiling < budget.spent_usd:
        return AuditEventType.BUDGET_EXCEEDED
    soft = budget.soft_limit_usd
    if soft is not None and previous_spent < soft <= budget.spent_usd and budget.spent_usd <= ceiling:
        return AuditEventType.BUDGET_WARNING
    return None


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    current = as_utc_datetime(now, "now")
    start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        next_start = start.replace(year=start.year + 1, month=1)
    else:
        next_start = start.replace(month=start.month + 1)
    return start, next_start - timedelta(seconds=1)


def _next_period(start: datetime, end: datetime, now: datetime) -> tuple[datetime, datetime]:
    """Period following ``start..end`` that contains ``now``; calendar months stay calendar months."""

    if (start, end) == _month_bounds(start):
        return _month_bounds(now)
    length = end - start + timedelta(seconds=1)
    skipped = math.floor((now - start) / length)
    next_start = start + length * skipped
    return next_start, next_start + length - timedelta(seconds=1)


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


def _budget_from_row(row: Mapping[str, Any]) -> TenantBudget:
    soft = row.get("soft_limit_usd")
    hard = row.get("hard_limit_usd")
    return TenantBudget(
        tenant_id=row_text(row, "tenant_id", "tenant_budgets.tenant_id"),
        limit_usd=row_float(row, "limit_usd"),
        spent_usd=round_usd(row_float(row, "spent_usd")),
        period_start=as_utc_datetime(row.get("period_start"), "tenant_budgets.period_start"),
        period_end=as_utc_datetime(row.get("period_end"), "tenant_budgets.period_end"),
        soft_limit_usd=None if soft is None else float(soft),
        hard_limit_usd=None if hard is None else float(hard),
        created_at=row_text(row, "created_at", "tenant_budgets.created_at"),
        updated_at=row_text(row, "updated_at", "tenant_budgets.updated_at"),
    )


__all__ = [
    "BudgetCheck",
    "BudgetCheckReason",
    "BudgetManager",
    "BudgetStats",
    "CostForecast",
    "TenantBudget",
]
