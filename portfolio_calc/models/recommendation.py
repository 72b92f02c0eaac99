"""
Recommendation models.

Inputs (built by the caller from portfolio and allocation-target storage):
  PortfolioHolding      — one asset's native-currency value + class placement
  AssetClassTarget      — class-level allocation band (target_min..target_max %)
  AssetSubclassTarget   — subclass-level band; wins over the class band
  AssetScoreSnapshot    — latest score of an asset

Intermediate:
  AssetAllocationContext — per-asset allocation gap / score context fed to the
                           allocator

Outputs:
  RecommendationItem, RecommendationBreakdown, RecommendationResult

Snapshots recorded in the RECS_INPUTS_CAPTURED audit event:
  PortfolioStateSnapshot, AllocationTargetsSnapshot

All percentages and amounts are decimal strings.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from portfolio_calc.utils.decimal_utils import as_decimal_text, try_parse_decimal


def _check_decimal_text(value: Optional[str], field: str) -> Optional[str]:
    if value is not None and try_parse_decimal(value) is None:
        raise ValueError(f"{field} must be a decimal string, got '{value}'.")
    return value


# ── Inputs ────────────────────────────────────────────────────────────────────


class PortfolioHolding(BaseModel):
    """One portfolio asset as seen by the recommendation generator.

    Attributes:
        value: Current market value in ``currency``.
        currency: Native currency of ``value``; ``None`` means already in
            the request's base currency.
        is_ignored: Ignored assets are excluded from allocation entirely.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    value: str
    currency: Optional[str] = None
    class_id: Optional[str] = None
    subclass_id: Optional[str] = None
    is_ignored: bool = False

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        return as_decimal_text(v)

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: str) -> str:
        return _check_decimal_text(v, "value")  # type: ignore[return-value]


class _AllocationBand(BaseModel):
    """Target allocation band, in percent of the portfolio."""

    model_config = ConfigDict(frozen=True)

    target_min: Optional[str] = None
    target_max: Optional[str] = None
    min_allocation_value: Optional[str] = None

    @field_validator("target_min", "target_max", "min_allocation_value", mode="before")
    @classmethod
    def coerce_bounds(cls, v: Any) -> Any:
        return as_decimal_text(v)

    @field_validator("target_min", "target_max", "min_allocation_value")
    @classmethod
    def validate_bounds(cls, v: Optional[str]) -> Optional[str]:
        return _check_decimal_text(v, "allocation bound")


class AssetClassTarget(_AllocationBand):
    """Target band of an asset class."""

    class_id: str
    class_name: str


class AssetSubclassTarget(_AllocationBand):
    """Target band of a subclass within ``class_id``; wins over the class band."""

    subclass_id: str
    subclass_name: str
    class_id: str


class AssetScoreSnapshot(BaseModel):
    """Latest score of one asset and the criteria version that produced it."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    score: str
    criteria_version_id: Optional[str] = None


# ── Allocator context and outputs ─────────────────────────────────────────────


class AssetAllocationContext(BaseModel):
    """Everything the allocator needs to know about one asset.

    Attributes:
        current_value: Value in the base currency.
        current_allocation: Share of the portfolio, percent (4 dp).
        target_allocation: Midpoint of the applicable target band, percent.
        allocation_gap: ``target_allocation - current_allocation``.
        min_allocation_value: Smallest amount worth recommending, or ``None``.
        is_over_allocated: ``current_allocation > target_max``.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    subclass_id: Optional[str] = None
    subclass_name: Optional[str] = None
    current_value: str
    current_allocation: str
    target_allocation: str
    allocation_gap: str
    score: str
    min_allocation_value: Optional[str] = None
    is_over_allocated: bool = False


class RecommendationBreakdown(BaseModel):
    """Explains how a recommended amount was reached."""

    model_config = ConfigDict(frozen=True)

    class_id: Optional[str] = None
    class_name: Optional[str] = None
    subclass_id: Optional[str] = None
    subclass_name: Optional[str] = None
    current_value: str
    target_midpoint: str
    priority: str
    redistributed_from: Optional[str] = None


class RecommendationItem(BaseModel):
    """Recommended investment for one asset."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    score: str
    current_allocation: str
    target_allocation: str
    allocation_gap: str
    recommended_amount: str
    priority: str
    is_over_allocated: bool
    breakdown: RecommendationBreakdown
    sort_order: int


# ── Audit snapshots ───────────────────────────────────────────────────────────


class PortfolioAssetState(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    current_value: str
    current_allocation: str


class PortfolioStateSnapshot(BaseModel):
    """Portfolio valuation at recommendation time (base currency)."""

    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    total_value: str
    base_currency: str
    assets: list[PortfolioAssetState]


class AllocationTargetsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    classes: list[AssetClassTarget] = []
    subclasses: list[AssetSubclassTarget] = []


class RecommendedItemSummary(BaseModel):
    """Compact per-item record stored in RECS_COMPUTED."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    recommended_amount: str
    priority: str
    is_over_allocated: bool


# ── Service request / result ──────────────────────────────────────────────────


class RecommendationRequest(BaseModel):
    """Everything needed to generate one set of recommendations.

    ``contribution`` and ``dividends`` must be non-negative; their sum is the
    total investable amount.
    """

    model_config = ConfigDict(frozen=True)

    portfolio_id: str
    contribution: str
    dividends: str = "0"
    base_currency: str = "USD"
    holdings: list[PortfolioHolding] = []
    classes: list[AssetClassTarget] = []
    subclasses: list[AssetSubclassTarget] = []
    scores: list[AssetScoreSnapshot] = []

    @field_validator("contribution", "dividends", mode="before")
    @classmethod
    def coerce_amounts(cls, v: Any) -> Any:
        return as_decimal_text(v)

    @field_validator("base_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()


class RecommendationResult(BaseModel):
    """Outcome of ``RecommendationGenerator.generate``."""

    model_config = ConfigDict(frozen=True)

    recommendation_id: str
    correlation_id: str
    user_id: str
    portfolio_id: str
    contribution: str
    dividends: str
    total_investable: str
    total_allocated: str
    base_currency: str
    items: list[RecommendationItem]
    generated_at: datetime
    duration_ms: int
