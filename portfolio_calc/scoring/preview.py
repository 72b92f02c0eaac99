"""
Criteria previews and side-by-side comparison of two criteria sets.

Both are read-only views on top of ``calculate_scores``: nothing is recorded
in the event store, and the assets are supplied by the caller.

  preview_scores(criteria, assets, previous_criteria=None, top_n=10)
      Top-N assets under ``criteria`` and, when ``previous_criteria`` is
      given, how many assets improved, declined or kept their score.

  compare_criteria_sets(criteria_a, criteria_b, assets)
      Rule-level differences (matched by case-insensitive name), average
      score per set, and the assets whose rank moved.

Ranking
-------
Assets are ranked by score, highest first. ``sorted`` is stable, so equal
scores keep the caller's asset order. Ranks start at 1.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Sequence

from portfolio_calc.models.criteria import (
    AssetScoreResult,
    AssetWithFundamentals,
    CriterionResult,
    CriterionRule,
)
from portfolio_calc.scoring.engine import calculate_scores
from portfolio_calc.utils.decimal_utils import (
    ZERO,
    decimal_context,
    parse_decimal,
    sum_decimals,
    to_fixed,
)
from portfolio_calc.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

TOP_N_ASSETS = 10
MAX_SAMPLE_ASSETS = 20
PREVIEW_VERSION_ID = "preview"

DifferenceType = Literal["only_a", "only_b", "modified", "identical"]
RankChange = Literal["improved", "declined", "unchanged"]

_DIFFERENCE_ORDER: dict[str, int] = {"only_a": 0, "only_b": 1, "modified": 2, "identical": 3}


# ── Result types ──────────────────────────────────────────────────────────────


@dataclass
class PreviewAsset:
    asset_id: str
    symbol: str
    score: str
    rank: int
    breakdown: list[CriterionResult] = field(default_factory=list)


@dataclass
class ScoreComparison:
    """How scores moved between the previous and the current criteria."""

    improved: int
    declined: int
    unchanged: int
    previous_average: str
    current_average: str


@dataclass
class PreviewResult:
    top_assets: list[PreviewAsset]
    comparison: Optional[ScoreComparison]
    calculated_at: datetime
    sample_size: int


@dataclass
class CriteriaDifference:
    """One rule as it appears in set A and set B (``None`` when absent)."""

    criterion_name: str
    in_set_a: Optional[CriterionRule]
    in_set_b: Optional[CriterionRule]
    difference_type: DifferenceType


@dataclass
class RankingChange:
    asset_id: str
    symbol: str
    rank_a: int
    rank_b: int
    score_a: str
    score_b: str
    change: RankChange
    position_change: int


@dataclass
class CriteriaComparison:
    differences: list[CriteriaDifference]
    ranking_changes: list[RankingChange]
    average_score_a: str
    average_score_b: str
    criteria_count_a: int
    criteria_count_b: int
    sample_size: int


# ── Helpers ───────────────────────────────────────────────────────────────────


def _score_map(
    criteria: Sequence[CriterionRule], assets: Sequence[AssetWithFundamentals]
) -> dict[str, AssetScoreResult]:
    results = calculate_scores(criteria, assets, PREVIEW_VERSION_ID)
    return {result.asset_id: result for result in results}


def _ranked(results: Sequence[AssetScoreResult]) -> list[AssetScoreResult]:
    return sorted(results, key=lambda r: -parse_decimal(r.score))


def average_score(results: Sequence[AssetScoreResult]) -> str:
    """Mean score, 4 dp; ``"0.0000"`` for no assets."""
    if not results:
        return to_fixed(ZERO)
    total = sum_decimals([parse_decimal(r.score) for r in results])
    with decimal_context():
        return to_fixed(total / Decimal(len(results)))


# ── Preview ───────────────────────────────────────────────────────────────────


def preview_scores(
    criteria: Sequence[CriterionRule],
    assets: Sequence[AssetWithFundamentals],
    previous_criteria: Optional[Sequence[CriterionRule]] = None,
    top_n: int = TOP_N_ASSETS,
    max_sample: int = MAX_SAMPLE_ASSETS,
) -> PreviewResult:
    """Score a sample of ``assets`` and return the best ``top_n``.

    Only the first ``max_sample`` assets are scored. With no criteria the
    preview is empty and carries no comparison. The comparison is computed
    only when ``previous_criteria`` is non-empty.
    """
    sample = list(assets)[:max_sample]
    calculated_at = utcnow()

    if not criteria:
        return PreviewResult(
            top_assets=[], comparison=None, calculated_at=calculated_at, sample_size=len(sample)
        )

    current = _score_map(criteria, sample)
    top_assets = [
        PreviewAsset(
            asset_id=result.asset_id,
            symbol=result.symbol,
            score=result.score,
            rank=idx + 1,
            breakdown=list(result.breakdown),
        )
        for idx, result in enumerate(_ranked(list(current.values()))[:top_n])
    ]

    comparison: Optional[ScoreComparison] = None
    if previous_criteria:
        previous = _score_map(previous_criteria, sample)
        improved = declined = unchanged = 0
        for asset_id, result in current.items():
            before = previous.get(asset_id)
            if before is None:
                continue
            diff = parse_decimal(result.score) - parse_decimal(before.score)
            if diff > ZERO:
                improved += 1
            elif diff < ZERO:
                declined += 1
            else:
                unchanged += 1
        comparison = ScoreComparison(
            improved=improved,
            declined=declined,
            unchanged=unchanged,
            previous_average=average_score(list(previous.values())),
            current_average=average_score(list(current.values())),
        )

    logger.debug(
        "Criteria preview | sample=%d | top=%d | compared=%s",
        len(sample), len(top_assets), comparison is not None,
    )
    return PreviewResult(
        top_assets=top_assets,
        comparison=comparison,
        calculated_at=calculated_at,
        sample_size=len(sample),
    )


# ── Comparison ────────────────────────────────────────────────────────────────


def _criterion_key(rule: CriterionRule) -> str:
    return rule.name.strip().lower()


def _same_rule(a: CriterionRule, b: CriterionRule) -> bool:
    return (
        a.metric == b.metric
        and a.operator == b.operator
        and a.value == b.value
        and a.value2 == b.value2
        and a.points == b.points
    )


def calculate_criteria_differences(
    criteria_a: Sequence[CriterionRule], criteria_b: Sequence[CriterionRule]
) -> list[CriteriaDifference]:
    """Pair rules by name and classify each pair.

    Sorted by type (only_a, only_b, modified, identical), then by name.
    """
    by_key_b = {_criterion_key(rule): rule for rule in criteria_b}
    matched: set[str] = set()
    differences: list[CriteriaDifference] = []

    for rule_a in criteria_a:
        key = _criterion_key(rule_a)
        rule_b = by_key_b.get(key)
        if rule_b is None:
            differences.append(CriteriaDifference(rule_a.name, rule_a, None, "only_a"))
            continue
        matched.add(key)
        kind: DifferenceType = "identical" if _same_rule(rule_a, rule_b) else "modified"
        differences.append(CriteriaDifference(rule_a.name, rule_a, rule_b, kind))

    for rule_b in criteria_b:
        if _criterion_key(rule_b) not in matched:
            differences.append(CriteriaDifference(rule_b.name, None, rule_b, "only_b"))

    return sorted(
        differences,
        key=lambda d: (_DIFFERENCE_ORDER[d.difference_type], d.criterion_name.lower()),
    )


def calculate_ranking_changes(
    scores_a: Sequence[AssetScoreResult], scores_b: Sequence[AssetScoreResult]
) -> list[RankingChange]:
    """Assets whose rank differs between the two score lists.

    A lower rank number under set B counts as ``improved``. Sorted by the
    size of the move (largest first), then symbol.
    """
    rank_a = {r.asset_id: idx + 1 for idx, r in enumerate(_ranked(scores_a))}
    rank_b = {r.asset_id: idx + 1 for idx, r in enumerate(_ranked(scores_b))}
    by_id_b = {r.asset_id: r for r in scores_b}

    changes: list[RankingChange] = []
    for result_a in scores_a:
        result_b = by_id_b.get(result_a.asset_id)
        if result_b is None:
            continue
        before, after = rank_a[result_a.asset_id], rank_b[result_a.asset_id]
        moved = before - after
        if moved == 0:
            continue
        changes.append(
            RankingChange(
                asset_id=result_a.asset_id,
                symbol=result_a.symbol,
                rank_a=before,
                rank_b=after,
                score_a=result_a.score,
                score_b=result_b.score,
                change="improved" if moved > 0 else "declined",
                position_change=abs(moved),
            )
        )

    return sorted(changes, key=lambda c: (-c.position_change, c.symbol))


def compare_criteria_sets(
    criteria_a: Sequence[CriterionRule],
    criteria_b: Sequence[CriterionRule],
    assets: Sequence[AssetWithFundamentals],
    max_sample: int = MAX_SAMPLE_ASSETS,
) -> CriteriaComparison:
    """Score the same asset sample under both sets and summarise the difference."""
    sample = list(assets)[:max_sample]
    scores_a = calculate_scores(criteria_a, sample, PREVIEW_VERSION_ID)
    scores_b = calculate_scores(criteria_b, sample, PREVIEW_VERSION_ID)

    return CriteriaComparison(
        differences=calculate_criteria_differences(criteria_a, criteria_b),
        ranking_changes=calculate_ranking_changes(scores_a, scores_b),
        average_score_a=average_score(scores_a),
        average_score_b=average_score(scores_b),
        criteria_count_a=len(criteria_a),
        criteria_count_b=len(criteria_b),
        sample_size=len(sample),
    )
