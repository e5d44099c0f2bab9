"""
Risk scoring for agent executions.

A pure, deterministic function over execution metadata. Five factors, each
normalized to 0-100, are combined with fixed weights:

- tool_breadth (0.25): 15 per tool plus 20 per high-risk tool match
- skill_maturity (0.25): lifecycle-state base, reduced when tested or pinned
- model_volatility (0.20): temperature scaled over [0, 2]
- data_sensitivity (0.20): lookup by sensitivity class
- custom_factors (0.10): 20 per custom flag

Risk-factor strings and recommendations are advisory and reproducible from
identical input.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

from agent_governance.domain.enums import SkillState
from agent_governance.errors import ValidationError


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DataSensitivity(StrEnum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PII = "pii"


FACTOR_WEIGHTS: Final[dict[str, float]] = {
    "tool_breadth": 0.25,
    "skill_maturity": 0.25,
    "model_volatility": 0.20,
    "data_sensitivity": 0.20,
    "custom_factors": 0.10,
}

HIGH_RISK_TOOLS: Final[tuple[str, ...]] = (
    "execute_code",
    "run_command",
    "delete_file",
    "send_email",
    "make_purchase",
    "modify_database",
    "admin_action",
)

SKILL_STATE_RISK: Final[dict[SkillState, int]] = {
    SkillState.ACTIVE: 0,
    SkillState.APPROVED: 10,
    SkillState.TESTED: 30,
    SkillState.DRAFT: 60,
    SkillState.DEPRECATED: 80,
}
UNKNOWN_SKILL_STATE_RISK: Final[int] = 50

DATA_SENSITIVITY_RISK: Final[dict[DataSensitivity, int]] = {
    DataSensitivity.NONE: 0,
    DataSensitivity.LOW: 20,
    DataSensitivity.MEDIUM: 40,
    DataSensitivity.HIGH: 70,
    DataSensitivity.PII: 100,
}

DEFAULT_TEMPERATURE: Final[float] = 0.7
DEFAULT_HIGH_RISK_THRESHOLD: Final[int] = 50


@dataclass(frozen=True, slots=True)
class RiskInput:
    tool_count: int = 0
    tool_names: tuple[str, ...] = ()
    skill_state: SkillState | str | None = None
    skill_tested: bool = False
    skill_pinned: bool = False
    model: str | None = None
    temperature: float | None = None
    data_sensitivity: DataSensitivity | str = DataSensitivity.NONE
    custom_flags: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if isinstance(self.tool_count, bool) or not isinstance(self.tool_count, int):
            raise ValidationError("tool_count: expected integer")
        if self.tool_count < 0:
            raise ValidationError("tool_count: must be >= 0")
        if self.temperature is not None and not math.isfinite(float(self.temperature)):
            raise ValidationError("temperature: must be finite")
        object.__setattr__(self, "tool_names", tuple(self.tool_names))
        object.__setattr__(self, "custom_flags", tuple(self.custom_flags))


@dataclass(frozen=True, slots=True)
class RiskFactors:
    tool_breadth: int
    skill_maturity: int
    model_volatility: int
    data_sensitivity: int
    custom_factors: int

    def weighted_sum(self) -> float:
        return (
            self.tool_breadth * FACTOR_WEIGHTS["tool_breadth"]
            + self.skill_maturity * FACTOR_WEIGHTS["skill_maturity"]
            + self.model_volatility * FACTOR_WEIGHTS["model_volatility"]
            + self.data_sensitivity * FACTOR_WEIGHTS["data_sensitivity"]
            + self.custom_factors * FACTOR_WEIGHTS["custom_factors"]
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "tool_breadth": self.tool_breadth,
            "skill_maturity": self.skill_maturity,
            "model_volatility": self.model_volatility,
            "data_sensitivity": self.data_sensitivity,
            "custom_factors": self.custom_factors,
        }


@dataclass(frozen=True, slots=True)
class RiskScore:
    score: int
    level: RiskLevel
    factors: RiskFactors
    risk_factors: tuple[str, ...]
    recommendations: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "score": self.score,
            "level": self.level.value,
            "factors": self.factors.to_dict(),
            "risk_factors": list(self.risk_factors),
            "recommendations": list(self.recommendations),
        }


def calculate_risk_score(risk_input: RiskInput) -> RiskScore:
    state = _parse_skill_state(risk_input.skill_state)
    sensitivity = _parse_sensitivity(risk_input.data_sensitivity)
    high_risk = high_risk_tool_matches(risk_input.tool_names)

    factors = RiskFactors(
        tool_breadth=min(100, risk_input.tool_count * 15 + len(high_risk) * 20),
        skill_maturity=_skill_maturity(state, risk_input.skill_tested, risk_input.skill_pinned),
        model_volatility=_model_volatility(risk_input.temperature),
        data_sensitivity=DATA_SENSITIVITY_RISK[sensitivity],
        custom_factors=min(100, len(risk_input.custom_flags) * 20),
    )
    score = min(100, _round_half_up(factors.weighted_sum()))
    return RiskScore(
        score=score,
        level=score_to_level(score),
        factors=factors,
        risk_factors=_identify_risk_factors(risk_input, state, sensitivity, factors, high_risk),
        recommendations=_recommendations(risk_input, state, sensitivity, factors),
    )


def score_to_level(score: int) -> RiskLevel:
    if score < 25:
        return RiskLevel.LOW
    if score < 50:
        return RiskLevel.MEDIUM
    if score < 75:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def high_risk_tool_matches(tool_names: Sequence[str]) -> tuple[str, ...]:
    """Tools whose lower-cased name contains a denylisted fragment."""

    return tuple(
        name for name in tool_names if any(fragment in name.lower() for fragment in HIGH_RISK_TOOLS)
    )


def is_high_risk(risk_input: RiskInput, threshold: int = DEFAULT_HIGH_RISK_THRESHOLD) -> bool:
    return calculate_risk_score(risk_input).score >= threshold


def quick_risk_level(risk_input: RiskInput) -> RiskLevel:
    return calculate_risk_score(risk_input).level


def format_risk_score(score: RiskScore) -> str:
    lines = [
        f"Risk Score: {score.score}/100 ({score.level.value.upper()})",
        "",
        "Factors:",
        f"  Tool Breadth: {score.factors.tool_breadth}",
        f"  Skill Maturity: {score.factors.skill_maturity}",
        f"  Model Volatility: {score.factors.model_volatility}",
        f"  Data Sensitivity: {score.factors.data_sensitivity}",
        f"  Custom Factors: {score.factors.custom_factors}",
    ]
    if score.risk_factors:
        lines.extend(["", "Risk Factors:"])
        lines.extend(f"  - {item}" for item in score.risk_factors)
    if score.recommendations:
        lines.extend(["", "Recommendations:"])
        lines.extend(f"  - {item}" for item in score.recommendations)
    return "\n".join(lines)


def _skill_maturity(state: SkillState | None, tested: bool, pinned: bool) -> int:
    risk = UNKNOWN_SKILL_STATE_RISK if state is None else SKILL_STATE_RISK[state]
    if tested:
        risk = max(0, risk - 20)
    if pinned:
        risk = max(0, risk - 10)
    return risk


def _model_volatility(temperature: float | None) -> int:
    temp = DEFAULT_TEMPERATURE if temperature is None else float(temperature)
    return max(0, min(100, _round_half_up((temp / 2.0) * 100.0)))


def _identify_risk_factors(
    risk_input: RiskInput,
    state: SkillState | None,
    sensitivity: DataSensitivity,
    factors: RiskFactors,
    high_risk: tuple[str, ...],
) -> tuple[str, ...]:
    risks: list[str] = []
    if factors.tool_breadth > 50:
        risks.append(f"High tool count ({risk_input.tool_count} tools)")
    if high_risk:
        risks.append(f"High-risk tools: {', '.join(high_risk)}")
    if state is SkillState.DRAFT:
        risks.append("Skill is in draft state (not production-ready)")
    elif state is SkillState.DEPRECATED:
        risks.append("Skill is deprecated")
    if risk_input.temperature is not None and risk_input.temperature > 1.0:
        risks.append(f"High temperature ({risk_input.temperature}) increases unpredictability")
    if sensitivity is DataSensitivity.PII:
        risks.append("Processing PII data")
    elif sensitivity is DataSensitivity.HIGH:
        risks.append("Processing high-sensitivity data")
    if risk_input.custom_flags:
        risks.append(f"Custom risk flags: {', '.join(risk_input.custom_flags)}")
    return tuple(risks)


def _recommendations(
    risk_input: RiskInput,
    state: SkillState | None,
    sensitivity: DataSensitivity,
    factors: RiskFactors,
) -> tuple[str, ...]:
    recommendations: list[str] = []
    if factors.skill_maturity > 30 and state is not SkillState.ACTIVE:
        recommendations.append("Promote skill to active state after thorough testing")
    if not risk_input.skill_pinned:
        recommendations.append("Pin skill version to prevent unexpected changes")
    if factors.model_volatility > 50:
        recommendations.append("Consider lowering temperature for more predictable outputs")
    if factors.tool_breadth > 50:
        recommendations.append("Review if all tools are necessary for this task")
    if sensitivity in (DataSensitivity.PII, DataSensitivity.HIGH):
        recommendations.append("Ensure proper data redaction is configured")
    return tuple(recommendations)


def _parse_skill_state(value: SkillState | str | None) -> SkillState | None:
    if value is None or isinstance(value, SkillState):
        return value
    try:
        return SkillState(value)
    except ValueError:
        return None


def _parse_sensitivity(value: DataSensitivity | str | None) -> DataSensitivity:
    if value is None:
        return DataSensitivity.NONE
    if isinstance(value, DataSensitivity):
        return value
    try:
        return DataSensitivity(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in DataSensitivity)
        raise ValidationError(f"data_sensitivity: expected one of: {allowed}") from exc


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


__all__ = [
    "DATA_SENSITIVITY_RISK",
    "DEFAULT_HIGH_RISK_THRESHOLD",
    "DEFAULT_TEMPERATURE",
    "FACTOR_WEIGHTS",
    "HIGH_RISK_TOOLS",
    "SKILL_STATE_RISK",
    "DataSensitivity",
    "RiskFactors",
    "RiskInput",
    "RiskLevel",
    "RiskScore",
    "calculate_risk_score",
    "format_risk_score",
    "high_risk_tool_matches",
    "is_high_risk",
    "quick_risk_level",
    "score_to_level",
]
