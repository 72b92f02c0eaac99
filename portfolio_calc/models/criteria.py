"""
Scoring criteria, asset fundamentals and score result models.

``CriterionRule`` is one user-defined rule (metric, operator, threshold(s),
points). A criteria set is an ordered list of rules evaluated together and
identified by a ``criteria_version_id``.

``AssetWithFundamentals`` is built per calculation request from external
market data. Fundamental values are kept as strings so no precision is lost
on the way into the decimal evaluator; numbers are accepted and normalised.

All models are frozen: a calculation must never mutate its inputs.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from portfolio_calc.utils.decimal_utils import as_decimal_text, try_parse_decimal

Metric = Literal[
    "dividend_yield",
    "pe_ratio",
    "pb_ratio",
    "market_cap",
    "revenue",
    "earnings",
    "surplus_years",
    "roe",
    "roa",
    "debt_to_equity",
    "current_ratio",
    "gross_margin",
    "net_margin",
    "payout_ratio",
    "ev_ebitda",
]

SkippedReason = Literal["missing_fundamental"]
MISSING_FUNDAMENTAL: SkippedReason = "missing_fundamental"


class CriterionOperator(str, Enum):
    """Comparison applied between an asset's metric value and the rule threshold."""

    GT      = "gt"
    LT      = "lt"
    GTE     = "gte"
    LTE     = "lte"
    EQUALS  = "equals"
    BETWEEN = "between"
    EXISTS  = "exists"


class CriterionRule(BaseModel):
    """One scoring rule.

    Attributes:
        id: Stable criterion identifier.
        name: Display name, copied into every ``CriterionResult``.
        metric: Fundamental key the rule reads.
        operator: Comparison operator.
        value: Threshold as a decimal string; ignored for ``exists``.
        value2: Upper bound, only for ``between``.
        points: Points awarded on match. May be negative.
        required_fundamentals: Metrics that must be present for the rule to
            be evaluated at all. Defaults to ``[metric]``.
        sort_order: Position of the rule within its criteria set.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    metric: Metric
    operator: CriterionOperator
    value: Optional[str] = None
    value2: Optional[str] = None
    points: int
    required_fundamentals: list[Metric] = []
    sort_order: int = 0

    @model_validator(mode="before")
    @classmethod
    def default_required_fundamentals(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("required_fundamentals"):
            data = dict(data)
            data["required_fundamentals"] = [data.get("metric")]
        return data

    @field_validator("value", "value2", mode="before")
    @classmethod
    def coerce_thresholds(cls, v: Any) -> Any:
        return as_decimal_text(v)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "CriterionRule":
        op = self.operator
        if op != CriterionOperator.EXISTS and try_parse_decimal(self.value) is None:
            raise ValueError(
                f"Criterion '{self.id}': operator '{op.value}' requires a numeric value, "
                f"got {self.value!r}."
            )
        if op == CriterionOperator.BETWEEN:
            upper = try_parse_decimal(self.value2)
            if upper is None:
                raise ValueError(
                    f"Criterion '{self.id}': 'between' requires a numeric value2, "
                    f"got {self.value2!r}."
                )
            lower = try_parse_decimal(self.value)
            assert lower is not None
            if not lower < upper:
                raise ValueError(
                    f"Criterion '{self.id}': 'between' requires value < value2 "
                    f"({self.value} >= {self.value2})."
                )
        elif self.value2 is not None:
            raise ValueError(
                f"Criterion '{self.id}': value2 is only allowed for 'between'."
            )
        return self


class AssetWithFundamentals(BaseModel):
    """An asset and the fundamentals available for it at calculation time.

    A metric mapped to ``None`` (or absent) counts as missing.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    fundamentals: dict[str, Optional[str]] = {}

    @field_validator("fundamentals", mode="before")
    @classmethod
    def coerce_fundamentals(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): as_decimal_text(val) for k, val in v.items()}
        return v


class CriterionResult(BaseModel):
    """Evaluation trace of one criterion against one asset."""

    model_config = ConfigDict(frozen=True)

    criterion_id: str
    criterion_name: str
    matched: bool
    points_awarded: int
    actual_value: Optional[str] = None
    skipped_reason: Optional[SkippedReason] = None

    @model_validator(mode="after")
    def validate_skip_consistency(self) -> "CriterionResult":
        if self.skipped_reason is not None and (self.matched or self.points_awarded != 0):
            raise ValueError(
                "A skipped criterion must have matched=False and points_awarded=0."
            )
        if not self.matched and self.points_awarded != 0:
            raise ValueError("points_awarded must be 0 when matched=False.")
        return self


class AssetScoreResult(BaseModel):
    """Final score of one asset under one criteria version.

    Attributes:
        score: Sum of awarded points, fixed-point string with 4 fractional digits.
        breakdown: One ``CriterionResult`` per criterion, in evaluation order.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    score: str
    breakdown: list[CriterionResult]
    criteria_version_id: str
    calculated_at: datetime
