"""Budget limits, checks, forecasts and atomic spend recording."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from agent_governance.domain.enums import AuditEventType
from agent_governance.errors import BudgetExceededError, NotFoundError, ValidationError
from agent_governance.governance.audit import AuditLog
from agent_governance.governance.budgets import BudgetCheckReason, BudgetManager
from agent_governance.governance.pricing import estimate_cost, price_for
from agent_governance.persistence.state_db import StateDB

_NOW = datetime(2026, 2, 10, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def budgets(db: StateDB, audit: AuditLog) -> BudgetManager:
    return BudgetManager(db, audit, clock=lambda: _NOW)


def test_check_budget_against_hard_limit(budgets: BudgetManager) -> None:
    budgets.set_budget("acme", limit_usd=100.0, hard_limit_usd=100.0)
    budgets.record_spend("acme", 42.50)

    small = budgets.check_budget("acme", 5.0)
    assert small.allowed is True
    assert small.remaining_after == pytest.approx(52.50)
    assert small.remaining == pytest.approx(57.50)

    large = budgets.check_budget("acme", 60.0)
    assert large.allowed is False
    assert large.reason is BudgetCheckReason.BUDGET_EXCEEDED
    assert large.error is not None


def test_soft_limit_is_a_warning_not_a_block(budgets: BudgetManager) -> None:
    budgets.set_budget("acme", limit_usd=100.0, soft_limit_usd=50.0)
    budgets.record_spend("acme", 45.0)

    check = budgets.check_budget("acme", 10.0)

    assert check.allowed is True
    assert check.reason is BudgetCheckReason.SOFT_LIMIT_EXCEEDED
    assert check.warning == "Budget usage at 55.0% - approaching limit"


def test_without_hard_limit_overspend_is_allowed_with_warning(budgets: BudgetManager) -> None:
    budgets.set_budget("acme", limit_usd=10.0, hard_limit=False)
    check = budgets.check_budget("acme", 25.0)
    assert check.allowed is True
    assert check.warning == "Budget exceeded - soft limit"


def test_no_budget_is_unbounded(budgets: BudgetManager) -> None:
    check = budgets.check_budget("nobody", 1_000.0)
    assert check.allowed is True
    assert check.reason is BudgetCheckReason.NO_BUDGET_SET
    assert check.to_dict()["remaining"] is None
    assert budgets.record_spend("nobody", 1.0) is None
    with pytest.raises(NotFoundError):
        budgets.require_budget("nobody")


def test_expired_period_blocks_when_hard_limit_enforced(budgets: BudgetManager) -> None:
    budgets.set_budget(
        "acme",
        limit_usd=100.0,
        period_start=_NOW - timedelta(days=40),
        period_end=_NOW - timedelta(days=10),
    )
    check = budgets.check_budget("acme", 1.0)
    assert check.allowed is False
    assert check.reason is BudgetCheckReason.PERIOD_EXPIRED


def test_set_budget_preserves_spend_and_audits(budgets: BudgetManager, audit: AuditLog) -> None:
    budgets.set_budget("acme", limit_usd=100.0, actor="ops")
    budgets.record_spend("acme", 12.0)
    updated = budgets.set_budget("acme", limit_usd=200.0, actor="ops")

    assert updated.spent_usd == pytest.approx(12.0)
    assert updated.soft_limit_usd == pytest.approx(160.0)
    assert updated.period_start == datetime(2026, 2, 1, tzinfo=UTC)
    assert audit.query("acme", event_type=AuditEventType.BUDGET_UPDATED).total == 2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit_usd": 0.0},
        {"limit_usd": -5.0},
        {"limit_usd": 10.0, "soft_limit_usd": 20.0, "hard_limit_usd": 15.0},
        {"limit_usd": 10.0, "period_start": _NOW, "period_end": _NOW},
    ],
)
def test_set_budget_validation(budgets: BudgetManager, kwargs: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        budgets.set_budget("acme", **kwargs)  # type: ignore[arg-type]
    assert budgets.get_budget("acme") is None


def test_forecast_never_mutates_spend(budgets: BudgetManager) -> None:
    budgets.set_budget("acme", limit_usd=1.0)
    forecast = budgets.forecast_cost("acme", prompt_size=10_000, max_output_tokens=10_000, model="gpt-4")

    assert forecast.input_tokens == 10_000
    assert forecast.estimated_cost == pytest.approx(0.30 + 0.60)
    assert forecast.would_exceed_budget is False
    assert forecast.remaining_budget == pytest.approx(1.0)
    assert budgets.require_budget("acme").spent_usd == 0.0

    expensive = budgets.forecast_cost("acme", prompt_size=50_000, model="gpt-4")
    assert expensive.would_exceed_budget is True
    assert expensive.budget_allowed is False
    with pytest.raises(BudgetExceededError):
        budgets.check_before_execution("acme", prompt_size=50_000, model="gpt-4")
    assert budgets.require_budget("acme").spent_usd == 0.0


def test_forecast_defaults_output_tokens_and_unknown_model_pricing(budgets: BudgetManager) -> None:
    forecast = budgets.forecast_cost("acme", prompt_size=1_000, model="mystery-model")
    assert forecast.output_tokens == 1_000
    assert forecast.estimated_cost == pytest.approx(0.01 + 0.03)
    assert forecast.remaining_budget == float("inf")
    assert price_for("mystery-model") == price_for(None)
    assert estimate_cost("gpt-4o-mini", input_tokens=1_000, output_tokens=0).total_cost == pytest.approx(0.00015)


def test_record_spend_accumulates_and_emits_threshold_events(
    budgets: BudgetManager, audit: AuditLog
) -> None:
    budgets.set_budget("acme", limit_usd=10.0)
    for _ in range(4):
        budgets.record_spend("acme", 2.0)
    assert audit.query("acme", event_type=AuditEventType.BUDGET_WARNING).total == 1

    final = budgets.record_spend("acme", 3.0, trace_id="trc-1")
    assert final is not None
    assert final.spent_usd == pytest.approx(11.0)
    exceeded = audit.query("acme", event_type=AuditEventType.BUDGET_EXCEEDED)
    assert exceeded.total == 1
    assert exceeded.items[0].trace_id == "trc-1"
    assert [b.tenant_id for b in budgets.over_budget_tenants()] == ["acme"]


def test_reset_spend_and_stats(budgets: BudgetManager) -> None:
    budgets.set_budget("acme", limit_usd=100.0)
    budgets.record_spend("acme", 30.0)

    stats = budgets.get_stats("acme")
    assert stats is not None
    assert stats.days_remaining == 19
    assert stats.average_daily_spend == pytest.approx(30.0 / 10)

    reset = budgets.reset_spend("acme", actor="ops")
    assert reset.spent_usd == 0.0
    assert budgets.get_stats("nobody") is None
    with pytest.raises(NotFoundError):
        budgets.reset_spend("nobody")


def test_spend_after_calendar_month_rolls_into_current_month(
    db: StateDB, audit: AuditLog
) -> None:
    clock = {"now": datetime(2026, 1, 20, 9, 0, tzinfo=UTC)}
    budgets = BudgetManager(db, audit, clock=lambda: clock["now"])
    budgets.set_budget("acme", limit_usd=10.0)
    budgets.record_spend("acme", 9.0)

    clock["now"] = _NOW
    rolled = budgets.record_spend("acme", 1.5)

    assert rolled is not None
    assert rolled.spent_usd == pytest.approx(1.5)
    assert rolled.period_start == datetime(2026, 2, 1, tzinfo=UTC)
    assert rolled.period_end == datetime(2026, 2, 28, 23, 59, 59, tzinfo=UTC)
    assert budgets.check_budget("acme", 1.0).allowed is True
    (entry,) = [
        item
        for item in audit.query("acme", event_type=AuditEventType.BUDGET_UPDATED).items
        if item.details.action == "period_rolled"
    ]
    assert entry.details.data["previous_spent_usd"] == pytest.approx(9.0)


def test_spend_after_custom_period_keeps_its_length(budgets: BudgetManager) -> None:
    budgets.set_budget(
        "acme",
        limit_usd=100.0,
        period_start=_NOW - timedelta(days=40),
        period_end=_NOW - timedelta(days=10, seconds=1),
    )

    rolled = budgets.record_spend("acme", 4.0)

    assert rolled is not None
    assert rolled.period_start == _NOW - timedelta(days=10)
    assert rolled.period_end == _NOW + timedelta(days=20, seconds=-1)
    assert rolled.spent_usd == pytest.approx(4.0)
