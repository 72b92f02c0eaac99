"""
Criteria-driven scoring engine.

The loop is criteria-outer, assets-inner: each rule (ordered by
``sort_order``, ties keep input order) is applied to every asset (input
order) before the next rule. Running totals are ``Decimal`` inside the
shared arithmetic context and are formatted to 4 fractional digits only once
all rules have been applied.

Two entry points:

  calculate_scores(criteria, assets, criteria_version_id)
      Pure. Same inputs → byte-identical scores and breakdowns.

  calculate_scores_with_events(config, criteria, assets, event_emitter)
      Awaits CALC_STARTED → INPUTS_CAPTURED → SCORES_COMPUTED →
      CALC_COMPLETED on the emitter under one fresh correlation id. A failed
      append propagates and no later event is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence
from uuid import uuid4

from portfolio_calc.models.criteria import (
    AssetScoreResult,
    AssetWithFundamentals,
    CriterionResult,
    CriterionRule,
)
from portfolio_calc.models.events import (
    AssetScoreRecord,
    CalcCompletedEvent,
    CalcStartedEvent,
    InputsCapturedEvent,
    ScoresComputedEvent,
)
from portfolio_calc.scoring.evaluator import evaluate_criterion
from portfolio_calc.utils.decimal_utils import (
    HUNDRED,
    ZERO,
    decimal_context,
    parse_decimal,
    to_fixed,
)
from portfolio_calc.utils.time_utils import elapsed_ms, monotonic_ms, utcnow

if TYPE_CHECKING:
    from portfolio_calc.events.store import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringEngineConfig:
    """Per-run settings for ``calculate_scores_with_events``.

    Attributes:
        user_id:             Owner of the run; every event is appended under it.
        criteria_version_id: Identifies the criteria set being applied.
        target_market:       Optional market filter, recorded in CALC_STARTED.
    """

    user_id: str
    criteria_version_id: str
    target_market: Optional[str] = None


@dataclass
class ScoreCalculationResult:
    """Return value of ``calculate_scores_with_events``."""

    scores: list[AssetScoreResult]
    correlation_id: str
    duration_ms: int
    asset_count: int = field(default=0)


def sort_criteria(criteria: Sequence[CriterionRule]) -> list[CriterionRule]:
    """Order rules by ``sort_order``; ``sorted`` is stable so ties keep input order."""
    return sorted(criteria, key=lambda rule: rule.sort_order)


def max_possible_score(criteria: Sequence[CriterionRule]) -> Decimal:
    """Sum of all positive ``points``: the best score an asset could reach."""
    with decimal_context():
        total = ZERO
        for rule in criteria:
            if rule.points > 0:
                total += Decimal(rule.points)
        return total


def score_percentage(score: Decimal, maximum: Decimal) -> Decimal:
    """``score / maximum × 100``; 0 when no positive points exist."""
    if maximum <= 0:
        return ZERO
    with decimal_context():
        return score / maximum * HUNDRED


def calculate_scores(
    criteria: Sequence[CriterionRule],
    assets: Sequence[AssetWithFundamentals],
    criteria_version_id: str,
    calculated_at: Optional[datetime] = None,
) -> list[AssetScoreResult]:
    """Score every asset against the criteria set.

    Args:
        criteria:            Rules to apply, in any order.
        assets:              Assets to score; output keeps this order.
        criteria_version_id: Copied into every result.
        calculated_at:       Timestamp stamped on results; defaults to now.
            Scores and breakdowns never depend on it.

    Returns:
        One ``AssetScoreResult`` per asset, in input order.
    """
    ordered = sort_criteria(criteria)
    stamp = calculated_at or utcnow()

    with decimal_context():
        totals: list[Decimal] = [ZERO for _ in assets]
        breakdowns: list[list[CriterionResult]] = [[] for _ in assets]

        for rule in ordered:
            for idx, asset in enumerate(assets):
                result = evaluate_criterion(rule, asset.fundamentals)
                breakdowns[idx].append(result)
                totals[idx] += Decimal(result.points_awarded)

    return [
        AssetScoreResult(
            asset_id=asset.id,
            symbol=asset.symbol,
            score=to_fixed(totals[idx]),
            breakdown=breakdowns[idx],
            criteria_version_id=criteria_version_id,
            calculated_at=stamp,
        )
        for idx, asset in enumerate(assets)
    ]


def build_score_records(
    scores: Sequence[AssetScoreResult], criteria: Sequence[CriterionRule]
) -> list[AssetScoreRecord]:
    """Project results into the SCORES_COMPUTED payload shape."""
    maximum = max_possible_score(criteria)
    return [
        AssetScoreRecord(
            asset_id=result.asset_id,
            symbol=result.symbol,
            score=result.score,
            max_possible_score=to_fixed(maximum),
            percentage=to_fixed(score_percentage(parse_decimal(result.score), maximum)),
            breakdown=result.breakdown,
        )
        for result in scores
    ]


async def calculate_scores_with_events(
    config: ScoringEngineConfig,
    criteria: Sequence[CriterionRule],
    assets: Sequence[AssetWithFundamentals],
    event_emitter: "EventStore",
) -> ScoreCalculationResult:
    """Score ``assets`` and record the full audit sequence.

    Raises:
        Exception: Whatever ``event_emitter.append`` raises; the sequence
            stops at the failed event.
    """
    correlation_id = str(uuid4())
    started_ms = monotonic_ms()
    user_id = config.user_id

    logger.info(
        "Scoring run starting | assets=%d | criteria=%d | correlation_id=%s",
        len(assets), len(criteria), correlation_id,
    )

    await event_emitter.append(
        user_id,
        CalcStartedEvent(
            correlation_id=correlation_id,
            user_id=user_id,
            timestamp=utcnow(),
            market=config.target_market,
        ),
    )

    await event_emitter.append(
        user_id,
        InputsCapturedEvent(
            correlation_id=correlation_id,
            criteria_version_id=config.criteria_version_id,
            criteria=list(criteria),
            asset_ids=[asset.id for asset in assets],
            assets=list(assets),
        ),
    )

    scores = calculate_scores(criteria, assets, config.criteria_version_id)

    await event_emitter.append(
        user_id,
        ScoresComputedEvent(
            correlation_id=correlation_id,
            results=build_score_records(scores, criteria),
        ),
    )

    duration_ms = elapsed_ms(started_ms)
    await event_emitter.append(
        user_id,
        CalcCompletedEvent(
            correlation_id=correlation_id,
            duration_ms=duration_ms,
            asset_count=len(assets),
            status="success",
        ),
    )

    logger.info(
        "Scoring run completed | assets=%d | duration_ms=%d | correlation_id=%s",
        len(assets), duration_ms, correlation_id,
    )

    return ScoreCalculationResult(
        scores=scores,
        correlation_id=correlation_id,
        duration_ms=duration_ms,
        asset_count=len(assets),
    )
