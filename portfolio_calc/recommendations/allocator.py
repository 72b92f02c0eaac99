"""
Recommendation allocator: splits an investable amount across assets.

Algorithm
---------
1. ``priority = allocation_gap × score / 100`` per asset. Under-allocated
   assets with high scores rank first; over-allocated ones go negative.
2. Assets are sorted by priority (descending), ties broken by symbol
   (ascending), so the output order is deterministic.
3. Over-allocated assets receive 0. The rest share the total in proportion
   to their positive priority; when no asset has a positive priority the
   total is split equally.
4. An amount below the asset's ``min_allocation_value`` is pulled into a
   pool. The pool goes to the highest-priority asset that already holds an
   allocation or whose minimum the pool meets (else the top eligible asset).
5. Amounts are rounded to 4 dp (ROUND_HALF_UP). The rounding residue is
   added to the first funded asset so the items sum exactly to the total.

All functions here are pure: no I/O, no clock, no randomness.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from portfolio_calc.models.recommendation import (
    AssetAllocationContext,
    AssetClassTarget,
    AssetScoreSnapshot,
    AssetSubclassTarget,
    PortfolioHolding,
    RecommendationBreakdown,
    RecommendationItem,
)
from portfolio_calc.utils.decimal_utils import (
    HUNDRED,
    ZERO,
    decimal_context,
    parse_decimal,
    round_fixed,
    sum_decimals,
    to_fixed,
    try_parse_decimal,
)

DEFAULT_SCORE = "50.0000"
DEFAULT_TOLERANCE = "0.0001"
DEFAULT_TARGET_MIN = Decimal(0)
DEFAULT_TARGET_MAX = Decimal(100)
_TWO = Decimal(2)


@dataclass(frozen=True)
class PrioritizedAsset:
    asset: AssetAllocationContext
    priority: Decimal

    @property
    def asset_id(self) -> str:
        return self.asset.asset_id


@dataclass
class Distribution:
    """Amount assigned to one asset, and how much of it came from the pool."""

    asset_id: str
    amount: Decimal
    redistributed_from: Decimal = ZERO


# ── Priority ──────────────────────────────────────────────────────────────────


def calculate_priority(allocation_gap: Decimal, score: Decimal) -> Decimal:
    """``allocation_gap × score / 100``."""
    with decimal_context():
        return allocation_gap * (score / HUNDRED)


def sort_assets_by_priority(
    assets: Sequence[AssetAllocationContext],
) -> list[PrioritizedAsset]:
    """Attach priorities (4 dp) and sort: priority desc, then symbol asc."""
    prioritized = [
        PrioritizedAsset(
            asset=asset,
            priority=round_fixed(
                calculate_priority(
                    parse_decimal(asset.allocation_gap), parse_decimal(asset.score)
                )
            ),
        )
        for asset in assets
    ]
    return sorted(prioritized, key=lambda p: (-p.priority, p.asset.symbol))


# ── Distribution ──────────────────────────────────────────────────────────────


def distribute_capital(
    sorted_assets: Sequence[PrioritizedAsset],
    total_investable: Decimal,
    min_allocations: Mapping[str, Decimal],
) -> list[Distribution]:
    """Split ``total_investable`` across ``sorted_assets``.

    Args:
        sorted_assets:    Output of ``sort_assets_by_priority``.
        total_investable: Amount to distribute; ≤ 0 distributes nothing.
        min_allocations:  asset_id → smallest amount worth recommending.

    Returns:
        One ``Distribution`` per asset, in ``sorted_assets`` order (empty
        when there is nothing to distribute). Amounts are rounded to 4 dp.
    """
    if not sorted_assets or total_investable <= ZERO:
        return []

    eligible = [p for p in sorted_assets if not p.asset.is_over_allocated]
    dists = {p.asset_id: Distribution(p.asset_id, ZERO) for p in sorted_assets}

    if not eligible:
        return [dists[p.asset_id] for p in sorted_assets]

    with decimal_context():
        total_positive = sum_decimals([p.priority for p in eligible if p.priority > ZERO])

        equal_split = total_positive.is_zero()
        for p in eligible:
            if equal_split:
                dists[p.asset_id].amount = total_investable / Decimal(len(eligible))
            elif p.priority > ZERO:
                dists[p.asset_id].amount = total_investable * (p.priority / total_positive)

        pool = ZERO
        changed = True
        iterations = 0
        max_iterations = len(eligible) * 2

        while changed and iterations < max_iterations:
            changed = False
            iterations += 1

            for p in eligible:
                dist = dists[p.asset_id]
                minimum = min_allocations.get(p.asset_id, ZERO)
                if dist.amount > ZERO and dist.amount < minimum:
                    pool += dist.amount
                    dist.amount = ZERO
                    changed = True

            if pool > ZERO:
                receiver: Optional[Distribution] = None
                for p in eligible:
                    dist = dists[p.asset_id]
                    if dist.amount > ZERO or pool >= min_allocations.get(p.asset_id, ZERO):
                        receiver = dist
                        break
                if receiver is None:
                    receiver = dists[eligible[0].asset_id]
                receiver.amount += pool
                receiver.redistributed_from += pool
                pool = ZERO
                changed = True

        for dist in dists.values():
            dist.amount = round_fixed(dist.amount)

        allocated = sum_decimals([dist.amount for dist in dists.values()])
        residue = round_fixed(total_investable) - allocated
        if not residue.is_zero():
            for p in eligible:
                dist = dists[p.asset_id]
                if dist.amount > ZERO:
                    dist.amount += residue
                    break
            else:
                # every share rounded to zero
                dists[eligible[0].asset_id].amount += residue

    return [dists[p.asset_id] for p in sorted_assets]


def _breakdown(
    asset: AssetAllocationContext, priority: Decimal, redistributed_from: Decimal
) -> RecommendationBreakdown:
    return RecommendationBreakdown(
        class_id=asset.class_id,
        class_name=asset.class_name,
        subclass_id=asset.subclass_id,
        subclass_name=asset.subclass_name,
        current_value=asset.current_value,
        target_midpoint=asset.target_allocation,
        priority=to_fixed(priority),
        redistributed_from=None if redistributed_from.is_zero() else to_fixed(redistributed_from),
    )


def _item(
    asset: AssetAllocationContext,
    amount: Decimal,
    priority: Decimal,
    redistributed_from: Decimal,
    sort_order: int,
) -> RecommendationItem:
    return RecommendationItem(
        asset_id=asset.asset_id,
        symbol=asset.symbol,
        score=asset.score,
        current_allocation=asset.current_allocation,
        target_allocation=asset.target_allocation,
        allocation_gap=asset.allocation_gap,
        recommended_amount=to_fixed(amount),
        priority=to_fixed(priority),
        is_over_allocated=asset.is_over_allocated,
        breakdown=_breakdown(asset, priority, redistributed_from),
        sort_order=sort_order,
    )


def generate_recommendation_items(
    assets: Sequence[AssetAllocationContext], total_investable: str
) -> list[RecommendationItem]:
    """Main entry point: one ``RecommendationItem`` per asset.

    With a zero or negative total every item gets ``"0.0000"`` and the input
    order is kept. Otherwise items come out in priority order.
    """
    if not assets:
        return []

    total = parse_decimal(total_investable)
    if total <= ZERO:
        return [
            _item(
                asset,
                ZERO,
                calculate_priority(parse_decimal(asset.allocation_gap), parse_decimal(asset.score)),
                ZERO,
                idx,
            )
            for idx, asset in enumerate(assets)
        ]

    ranked = sort_assets_by_priority(assets)
    minimums = {
        p.asset_id: parse_decimal(p.asset.min_allocation_value)
        for p in ranked
        if p.asset.min_allocation_value is not None
    }
    distributions = distribute_capital(ranked, total, minimums)

    return [
        _item(p.asset, dist.amount, p.priority, dist.redistributed_from, idx)
        for idx, (p, dist) in enumerate(zip(ranked, distributions))
    ]


# ── Allocation context ────────────────────────────────────────────────────────


def _band(target: Optional[AssetClassTarget | AssetSubclassTarget]) -> Optional[tuple[Decimal, Decimal]]:
    if target is None or target.target_min is None or target.target_max is None:
        return None
    return parse_decimal(target.target_min), parse_decimal(target.target_max)


def build_allocation_context(
    holdings: Sequence[PortfolioHolding],
    classes: Sequence[AssetClassTarget],
    subclasses: Sequence[AssetSubclassTarget],
    scores: Sequence[AssetScoreSnapshot],
    default_score: str = DEFAULT_SCORE,
) -> list[AssetAllocationContext]:
    """Derive allocation gap and score context for each non-ignored holding.

    ``holdings`` values must already be in the base currency. The band used
    for an asset is its subclass band when both bounds are set, else its
    class band when both bounds are set, else 0–100 %.
    """
    active = [h for h in holdings if not h.is_ignored]
    class_by_id = {c.class_id: c for c in classes}
    subclass_by_id = {s.subclass_id: s for s in subclasses}
    score_by_asset = {s.asset_id: s.score for s in scores}

    contexts: list[AssetAllocationContext] = []
    with decimal_context():
        total = ZERO
        for holding in active:
            total += parse_decimal(holding.value)

        for holding in active:
            value = parse_decimal(holding.value)
            current = ZERO if total.is_zero() else value / total * HUNDRED

            class_target = class_by_id.get(holding.class_id) if holding.class_id else None
            subclass_target = (
                subclass_by_id.get(holding.subclass_id) if holding.subclass_id else None
            )

            target_min, target_max = DEFAULT_TARGET_MIN, DEFAULT_TARGET_MAX
            min_allocation: Optional[str] = None
            sub_band, class_band = _band(subclass_target), _band(class_target)
            if sub_band is not None:
                target_min, target_max = sub_band
                min_allocation = subclass_target.min_allocation_value  # type: ignore[union-attr]
            elif class_band is not None:
                target_min, target_max = class_band
                min_allocation = class_target.min_allocation_value  # type: ignore[union-attr]

            midpoint = (target_min + target_max) / _TWO
            gap = midpoint - current

            contexts.append(
                AssetAllocationContext(
                    asset_id=holding.asset_id,
                    symbol=holding.symbol,
                    class_id=holding.class_id,
                    class_name=class_target.class_name if class_target else None,
                    subclass_id=holding.subclass_id,
                    subclass_name=subclass_target.subclass_name if subclass_target else None,
                    current_value=to_fixed(value),
                    current_allocation=to_fixed(current),
                    target_allocation=to_fixed(midpoint),
                    allocation_gap=to_fixed(gap),
                    score=score_by_asset.get(holding.asset_id, default_score),
                    min_allocation_value=min_allocation,
                    is_over_allocated=current > target_max,
                )
            )
    return contexts


# ── Validation ────────────────────────────────────────────────────────────────


def total_allocated(items: Sequence[RecommendationItem]) -> Decimal:
    return sum_decimals([parse_decimal(item.recommended_amount) for item in items])


def validate_total_equals(
    items: Sequence[RecommendationItem],
    total_investable: str,
    tolerance: str = DEFAULT_TOLERANCE,
) -> bool:
    """True when the recommended amounts sum to ``total_investable`` ± tolerance."""
    expected = parse_decimal(total_investable)
    with decimal_context():
        return abs(expected - total_allocated(items)) <= parse_decimal(tolerance)


def validate_over_allocated_get_zero(items: Sequence[RecommendationItem]) -> bool:
    """True when no over-allocated asset received money."""
    for item in items:
        if item.is_over_allocated:
            amount = try_parse_decimal(item.recommended_amount)
            if amount is None or not amount.is_zero():
                return False
    return True


def verify_determinism(
    assets: Sequence[AssetAllocationContext], total_investable: str
) -> bool:
    """Generate twice and compare asset, amount and order item by item."""
    first = generate_recommendation_items(assets, total_investable)
    second = generate_recommendation_items(assets, total_investable)
    if len(first) != len(second):
        return False
    return all(
        a.asset_id == b.asset_id
        and a.recommended_amount == b.recommended_amount
        and a.sort_order == b.sort_order
        for a, b in zip(first, second)
    )
