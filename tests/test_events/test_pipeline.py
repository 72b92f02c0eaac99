"""
Tests for portfolio_calc/events/pipeline.py.

What we test
------------
CalculationPipeline step methods:
  - start() returns a fresh correlation id and records CALC_STARTED.
  - Each step appends exactly one event under the given id.

run_complete():
  - Successful calculator → four events, status "success".
  - Failing calculator → no SCORES_COMPUTED, CALC_COMPLETED "failed" with
    the error message; the exception is reported, not raised.
"""

from __future__ import annotations

import pytest

from portfolio_calc.events.pipeline import CalculationPipeline, ScoringInputs
from portfolio_calc.events.store import InMemoryEventStore
from portfolio_calc.models.events import (
    CALC_COMPLETED,
    CALC_STARTED,
    INPUTS_CAPTURED,
    SCORES_COMPUTED,
)
from portfolio_calc.scoring.engine import calculate_scores


# ── Helpers ────────────────────────────────────────────────────────────────────

def _inputs(criteria, assets) -> ScoringInputs:
    return ScoringInputs(criteria_version_id="v1", criteria=criteria, assets=assets)


def _engine(inputs: ScoringInputs):
    return calculate_scores(inputs.criteria, inputs.assets, inputs.criteria_version_id)


def _broken(inputs: ScoringInputs):
    raise ValueError("criteria set is corrupt")


class TestPipelineSteps:
    @pytest.mark.asyncio
    async def test_start_records_calc_started(self):
        store = InMemoryEventStore()
        pipeline = CalculationPipeline(store)
        cid = await pipeline.start("user-1", market="US")

        (event,) = store.events
        assert event.event_type == CALC_STARTED
        assert event.correlation_id == cid
        assert event.payload.market == "US"

    @pytest.mark.asyncio
    async def test_start_ids_unique(self):
        pipeline = CalculationPipeline(InMemoryEventStore())
        assert await pipeline.start("user-1") != await pipeline.start("user-1")

    @pytest.mark.asyncio
    async def test_capture_inputs(self, sample_criteria, sample_assets):
        store = InMemoryEventStore()
        pipeline = CalculationPipeline(store)
        await pipeline.capture_inputs("cid", "user-1", _inputs(sample_criteria, sample_assets))

        (event,) = store.events
        assert event.event_type == INPUTS_CAPTURED
        assert event.payload.asset_ids == ["asset-1", "asset-2", "asset-3"]
        assert len(event.payload.criteria) == 3


class TestRunComplete:
    @pytest.mark.asyncio
    async def test_success(self, sample_criteria, sample_assets):
        store = InMemoryEventStore()
        run = await CalculationPipeline(store).run_complete(
            "user-1", _inputs(sample_criteria, sample_assets), _engine
        )

        assert run.status == "success"
        assert len(run.results) == 3
        events = await store.get_by_correlation_id(run.correlation_id)
        assert [e.event_type for e in events] == [
            CALC_STARTED, INPUTS_CAPTURED, SCORES_COMPUTED, CALC_COMPLETED,
        ]
        assert events[-1].payload.status == "success"
        assert events[-1].payload.asset_count == 3

    @pytest.mark.asyncio
    async def test_calculator_failure_recorded(self, sample_criteria, sample_assets):
        store = InMemoryEventStore()
        run = await CalculationPipeline(store).run_complete(
            "user-1", _inputs(sample_criteria, sample_assets), _broken
        )

        assert run.status == "failed"
        assert run.error_message == "criteria set is corrupt"
        assert run.results == []
        events = await store.get_by_correlation_id(run.correlation_id)
        assert [e.event_type for e in events] == [CALC_STARTED, INPUTS_CAPTURED, CALC_COMPLETED]
        assert events[-1].payload.status == "failed"
        assert events[-1].payload.error_message == "criteria set is corrupt"
