"""
Calculation audit events.

Every scoring or recommendation run emits exactly four events sharing one
``correlation_id``, in this order::

    CALC_STARTED → INPUTS_CAPTURED      → SCORES_COMPUTED → CALC_COMPLETED
    CALC_STARTED → RECS_INPUTS_CAPTURED → RECS_COMPUTED   → CALC_COMPLETED

``CURRENCY_CONVERTED`` is a standalone audit record written best-effort by
the currency converter.

``CalculationEvent`` is a pydantic discriminated union keyed on ``type``;
``parse_event`` turns a stored JSON payload back into the concrete model.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from portfolio_calc.models.criteria import AssetWithFundamentals, CriterionResult, CriterionRule
from portfolio_calc.models.recommendation import (
    AllocationTargetsSnapshot,
    AssetScoreSnapshot,
    PortfolioStateSnapshot,
    RecommendedItemSummary,
)

CalcStatus = Literal["success", "partial", "failed"]

CALC_STARTED = "CALC_STARTED"
INPUTS_CAPTURED = "INPUTS_CAPTURED"
SCORES_COMPUTED = "SCORES_COMPUTED"
CALC_COMPLETED = "CALC_COMPLETED"
RECS_INPUTS_CAPTURED = "RECS_INPUTS_CAPTURED"
RECS_COMPUTED = "RECS_COMPUTED"
CURRENCY_CONVERTED = "CURRENCY_CONVERTED"

EVENT_TYPES: tuple[str, ...] = (
    CALC_STARTED,
    INPUTS_CAPTURED,
    SCORES_COMPUTED,
    CALC_COMPLETED,
    RECS_INPUTS_CAPTURED,
    RECS_COMPUTED,
    CURRENCY_CONVERTED,
)


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    correlation_id: str


class CalcStartedEvent(_EventBase):
    type: Literal["CALC_STARTED"] = "CALC_STARTED"
    user_id: str
    timestamp: datetime
    market: Optional[str] = None


class InputsCapturedEvent(_EventBase):
    """Full scoring inputs: enough to re-run the calculation from the log alone."""

    type: Literal["INPUTS_CAPTURED"] = "INPUTS_CAPTURED"
    criteria_version_id: str
    criteria: list[CriterionRule]
    asset_ids: list[str]
    assets: list[AssetWithFundamentals] = []


class AssetScoreRecord(BaseModel):
    """Per-asset entry of SCORES_COMPUTED."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    symbol: str
    score: str
    max_possible_score: str
    percentage: str
    breakdown: list[CriterionResult]


class ScoresComputedEvent(_EventBase):
    type: Literal["SCORES_COMPUTED"] = "SCORES_COMPUTED"
    results: list[AssetScoreRecord]


class CalcCompletedEvent(_EventBase):
    type: Literal["CALC_COMPLETED"] = "CALC_COMPLETED"
    duration_ms: int
    asset_count: int
    status: CalcStatus
    error_message: Optional[str] = None


class RecsInputsCapturedEvent(_EventBase):
    type: Literal["RECS_INPUTS_CAPTURED"] = "RECS_INPUTS_CAPTURED"
    portfolio_state: PortfolioStateSnapshot
    allocation_targets: AllocationTargetsSnapshot
    scores: list[AssetScoreSnapshot]
    contribution: str
    dividends: str
    total_investable: str


class RecsComputedEvent(_EventBase):
    type: Literal["RECS_COMPUTED"] = "RECS_COMPUTED"
    recommendation_id: str
    total_investable: str
    total_allocated: str
    asset_count: int
    items: list[RecommendedItemSummary]


class CurrencyConvertedEvent(_EventBase):
    type: Literal["CURRENCY_CONVERTED"] = "CURRENCY_CONVERTED"
    source_value: str
    source_currency: str
    target_currency: str
    rate: str
    rate_date: date
    result_value: str
    is_stale_rate: bool
    timestamp: datetime
    parent_correlation_id: Optional[str] = None


CalculationEvent = Annotated[
    Union[
        CalcStartedEvent,
        InputsCapturedEvent,
        ScoresComputedEvent,
        CalcCompletedEvent,
        RecsInputsCapturedEvent,
        RecsComputedEvent,
        CurrencyConvertedEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(CalculationEvent)


def parse_event(payload: Union[dict[str, Any], str, bytes]) -> CalculationEvent:
    """Validate a stored payload (dict or JSON text) into a concrete event.

    Raises:
        pydantic.ValidationError: Unknown ``type`` or malformed fields.
    """
    if isinstance(payload, (str, bytes)):
        return _EVENT_ADAPTER.validate_json(payload)
    return _EVENT_ADAPTER.validate_python(payload)


def event_to_json(event: CalculationEvent) -> str:
    return event.model_dump_json()


class StoredEvent(BaseModel):
    """An event as handed back by an ``EventStore``.

    Attributes:
        event_id: Store-assigned id, monotonically increasing per store.
        payload: The concrete event model.
        created_at: When the store accepted the event (UTC).
    """

    model_config = ConfigDict(frozen=True)

    event_id: int
    correlation_id: str
    user_id: str
    event_type: str
    payload: CalculationEvent
    created_at: datetime
