"""
Replay a recorded scoring run and check it reproduces the stored results.

``replay`` loads the run's events, feeds the INPUTS_CAPTURED criteria and
asset fundamentals back into the scoring function, and compares the output
with SCORES_COMPUTED asset by asset (score and full breakdown).

Replay never raises: missing events, missing INPUTS_CAPTURED /
SCORES_COMPUTED, or a failing scoring function are reported through
``ReplayResult.success = False`` and ``error``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from portfolio_calc.events.store import EventStore
from portfolio_calc.models.events import (
    AssetScoreRecord,
    InputsCapturedEvent,
    ScoresComputedEvent,
)
from portfolio_calc.scoring.engine import build_score_records, calculate_scores
from portfolio_calc.utils.decimal_utils import try_parse_decimal

logger = logging.getLogger(__name__)

ScoringFunction = Callable[[InputsCapturedEvent], list[AssetScoreRecord]]

LENGTH_MISMATCH = "_length_mismatch"
MISSING = "_missing"


def score_from_inputs(inputs: InputsCapturedEvent) -> list[AssetScoreRecord]:
    """Default scoring function: the engine applied to recorded inputs."""
    scores = calculate_scores(inputs.criteria, inputs.assets, inputs.criteria_version_id)
    return build_score_records(scores, inputs.criteria)


@dataclass(frozen=True)
class Discrepancy:
    """One difference between the recorded and the replayed results.

    ``field`` is ``"score"``, ``"breakdown"``, ``"missing"`` or ``"length"``.
    """

    asset_id: str
    field: str
    original: str
    replayed: str


@dataclass
class ReplayResult:
    correlation_id: str
    success: bool
    matches: bool = False
    original_results: list[AssetScoreRecord] = field(default_factory=list)
    replay_results: list[AssetScoreRecord] = field(default_factory=list)
    discrepancies: list[Discrepancy] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BatchReplaySummary:
    total: int
    successful: int
    matching: int
    results: list[ReplayResult]


def _scores_equal(a: str, b: str) -> bool:
    da, db = try_parse_decimal(a), try_parse_decimal(b)
    if da is None or db is None:
        return a == b
    return da == db


def compare_results(
    original: Sequence[AssetScoreRecord], replayed: Sequence[AssetScoreRecord]
) -> list[Discrepancy]:
    """List every difference between two SCORES_COMPUTED result sets."""
    if len(original) != len(replayed):
        return [
            Discrepancy(
                asset_id=LENGTH_MISMATCH,
                field="length",
                original=str(len(original)),
                replayed=str(len(replayed)),
            )
        ]

    by_asset = {r.asset_id: r for r in replayed}
    found: list[Discrepancy] = []

    for orig in original:
        rep = by_asset.get(orig.asset_id)
        if rep is None:
            found.append(Discrepancy(orig.asset_id, "missing", orig.score, MISSING))
            continue
        if not _scores_equal(orig.score, rep.score):
            found.append(Discrepancy(orig.asset_id, "score", orig.score, rep.score))
        if orig.breakdown != rep.breakdown:
            found.append(
                Discrepancy(
                    orig.asset_id,
                    "breakdown",
                    f"{len(orig.breakdown)} criteria",
                    f"{len(rep.breakdown)} criteria",
                )
            )
    return found


async def replay(
    correlation_id: str,
    store: EventStore,
    scoring_fn: ScoringFunction = score_from_inputs,
) -> ReplayResult:
    """Re-run the scoring recorded under ``correlation_id`` and compare."""
    try:
        events = await store.get_by_correlation_id(correlation_id)
        if not events:
            return ReplayResult(
                correlation_id=correlation_id,
                success=False,
                error=f"No events found for correlation ID: {correlation_id}",
            )

        inputs = next(
            (e.payload for e in events if isinstance(e.payload, InputsCapturedEvent)),
            None,
        )
        if inputs is None:
            return ReplayResult(
                correlation_id=correlation_id,
                success=False,
                error="INPUTS_CAPTURED event not found",
            )

        computed = next(
            (e.payload for e in events if isinstance(e.payload, ScoresComputedEvent)),
            None,
        )
        if computed is None:
            return ReplayResult(
                correlation_id=correlation_id,
                success=False,
                error="SCORES_COMPUTED event not found",
            )

        replayed = scoring_fn(inputs)
        discrepancies = compare_results(computed.results, replayed)

    except Exception as exc:
        logger.error("Replay FAILED: %s | correlation_id=%s", exc, correlation_id)
        return ReplayResult(correlation_id=correlation_id, success=False, error=str(exc))

    if discrepancies:
        logger.warning(
            "Replay mismatch | discrepancies=%d | correlation_id=%s",
            len(discrepancies), correlation_id,
        )

    return ReplayResult(
        correlation_id=correlation_id,
        success=True,
        matches=not discrepancies,
        original_results=list(computed.results),
        replay_results=list(replayed),
        discrepancies=discrepancies,
    )


async def replay_batch(
    correlation_ids: Sequence[str],
    store: EventStore,
    scoring_fn: ScoringFunction = score_from_inputs,
) -> BatchReplaySummary:
    """Replay several runs one after another and summarise."""
    results = [await replay(cid, store, scoring_fn) for cid in correlation_ids]
    return BatchReplaySummary(
        total=len(results),
        successful=sum(1 for r in results if r.success),
        matching=sum(1 for r in results if r.matches),
        results=results,
    )


async def verify_determinism(
    correlation_id: str,
    store: EventStore,
    scoring_fn: ScoringFunction = score_from_inputs,
) -> tuple[bool, ReplayResult]:
    """``(True, result)`` when the replay succeeded and matched exactly."""
    result = await replay(correlation_id, store, scoring_fn)
    return result.success and result.matches, result
