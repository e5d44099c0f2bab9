"""Per-model token pricing used for cost forecasts.

Prices are USD per 1,000 tokens. Unknown models fall back to the ``default``
entry so forecasts stay conservative instead of failing.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from agent_governance.errors import ValidationError

DEFAULT_PRICING_KEY: Final[str] = "default"
_COST_DECIMALS: Final[int] = 6


@dataclass(frozen=True, slots=True)
class ModelPrice:
    input_per_1k: float
    output_per_1k: float

    @property
    def input_per_token(self) -> float:
        return self.input_per_1k / 1000.0

    @property
    def output_per_token(self) -> float:
        return self.output_per_1k / 1000.0


@dataclass(frozen=True, slots=True)
class CostEstimate:
    model: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    price: ModelPrice

    @property
    def total_cost(self) -> float:
        return round_usd(self.input_cost + self.output_cost)


MODEL_PRICING: Final[Mapping[str, ModelPrice]] = MappingProxyType(
    {
        "gpt-4": ModelPrice(0.03, 0.06),
        "gpt-4-turbo": ModelPrice(0.01, 0.03),
        "gpt-4o": ModelPrice(0.005, 0.015),
        "gpt-4o-mini": ModelPrice(0.00015, 0.0006),
        "gpt-3.5-turbo": ModelPrice(0.0005, 0.0015),
        "claude-3-opus": ModelPrice(0.015, 0.075),
        "claude-3-sonnet": ModelPrice(0.003, 0.015),
        "claude-3-haiku": ModelPrice(0.00025, 0.00125),
        "claude-3.5-sonnet": ModelPrice(0.003, 0.015),
        DEFAULT_PRICING_KEY: ModelPrice(0.01, 0.03),
    }
)


def round_usd(value: float) -> float:
    """Round a USD amount to micro-dollars."""

    return round(float(value), _COST_DECIMALS)


def price_for(model: str | None) -> ModelPrice:
    if model is None:
        return MODEL_PRICING[DEFAULT_PRICING_KEY]
    return MODEL_PRICING.get(model.strip(), MODEL_PRICING[DEFAULT_PRICING_KEY])


def estimate_cost(model: str, *, input_tokens: int, output_tokens: int) -> CostEstimate:
    for name, value in (("input_tokens", input_tokens), ("output_tokens", output_tokens)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer")
    price = price_for(model)
    return CostEstimate(
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost=round_usd(input_tokens * price.input_per_token),
        output_cost=round_usd(output_tokens * price.output_per_token),
        price=price,
    )


__all__ = [
    "DEFAULT_PRICING_KEY",
    "MODEL_PRICING",
    "CostEstimate",
    "ModelPrice",
    "estimate_cost",
    "price_for",
    "round_usd",
]
