"""
Step-wise emitter for the scoring audit sequence.

``calculate_scores_with_events`` covers the common case in one call. The
pipeline exposes each step separately for callers that assemble inputs
incrementally (or plug in their own calculator)::

    pipeline = CalculationPipeline(store)
    cid = await pipeline.start(user_id, market="BR")
    await pipeline.capture_inputs(cid, user_id, inputs)
    await pipeline.record_scores(cid, user_id, records)
    await pipeline.complete(cid, user_id, duration_ms, asset_count, "success")

Every step awaits its append; a store failure propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence
from uuid import uuid4

from portfolio_calc.events.store import EventStore
from portfolio_calc.models.criteria import AssetScoreResult, AssetWithFundamentals, CriterionRule
from portfolio_calc.models.events import (
    AssetScoreRecord,
    CalcCompletedEvent,
    CalcStartedEvent,
    CalcStatus,
    InputsCapturedEvent,
    ScoresComputedEvent,
)
from portfolio_calc.scoring.engine import build_score_records
from portfolio_calc.utils.time_utils import elapsed_ms, monotonic_ms, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringInputs:
    """Inputs recorded in INPUTS_CAPTURED."""

    criteria_version_id: str
    criteria: Sequence[CriterionRule]
    assets: Sequence[AssetWithFundamentals]

    @property
    def asset_ids(self) -> list[str]:
        return [asset.id for asset in self.assets]


@dataclass
class PipelineRunResult:
    correlation_id: str
    results: list[AssetScoreResult] = field(default_factory=list)
    status: CalcStatus = "success"
    error_message: Optional[str] = None


Calculator = Callable[[ScoringInputs], list[AssetScoreResult]]


class CalculationPipeline:
    """Emits CALC_STARTED → INPUTS_CAPTURED → SCORES_COMPUTED → CALC_COMPLETED."""

    def __init__(self, event_store: EventStore) -> None:
        self.event_store = event_store

    async def start(self, user_id: str, market: Optional[str] = None) -> str:
        """Record CALC_STARTED under a fresh correlation id and return the id."""
        correlation_id = str(uuid4())
        await self.event_store.append(
            user_id,
            CalcStartedEvent(
                correlation_id=correlation_id,
                user_id=user_id,
                timestamp=utcnow(),
                market=market,
            ),
        )
        return correlation_id

    async def capture_inputs(
        self, correlation_id: str, user_id: str, inputs: ScoringInputs
    ) -> None:
        await self.event_store.append(
            user_id,
            InputsCapturedEvent(
                correlation_id=correlation_id,
                criteria_version_id=inputs.criteria_version_id,
                criteria=list(inputs.criteria),
                asset_ids=inputs.asset_ids,
                assets=list(inputs.assets),
            ),
        )

    async def record_scores(
        self, correlation_id: str, user_id: str, records: Sequence[AssetScoreRecord]
    ) -> None:
        await self.event_store.append(
            user_id,
            ScoresComputedEvent(correlation_id=correlation_id, results=list(records)),
        )

    async def complete(
        self,
        correlation_id: str,
        user_id: str,
        duration_ms: int,
        asset_count: int,
        status: CalcStatus,
        error_message: Optional[str] = None,
    ) -> None:
        await self.event_store.append(
            user_id,
            CalcCompletedEvent(
                correlation_id=correlation_id,
                duration_ms=duration_ms,
                asset_count=asset_count,
                status=status,
                error_message=error_message,
            ),
        )

    async def run_complete(
        self,
        user_id: str,
        inputs: ScoringInputs,
        calculator: Calculator,
        market: Optional[str] = None,
    ) -> PipelineRunResult:
        """Run all four steps around ``calculator``.

        A calculator exception is recorded as CALC_COMPLETED ``status="failed"``
        with its message and reported in the returned result; it is not
        re-raised. Store failures still propagate.
        """
        started_ms = monotonic_ms()
        correlation_id = await self.start(user_id, market)
        await self.capture_inputs(correlation_id, user_id, inputs)

        run = PipelineRunResult(correlation_id=correlation_id)
        try:
            run.results = calculator(inputs)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            logger.error(
                "Calculator FAILED: %s | correlation_id=%s", exc, correlation_id,
            )
        else:
            await self.record_scores(
                correlation_id, user_id, build_score_records(run.results, inputs.criteria)
            )

        await self.complete(
            correlation_id,
            user_id,
            elapsed_ms(started_ms),
            len(inputs.assets),
            run.status,
            run.error_message,
        )
        return run
