"""
Recommendation generation with an audit trail.

``RecommendationGenerator.generate`` records::

    CALC_STARTED → RECS_INPUTS_CAPTURED → RECS_COMPUTED → CALC_COMPLETED

under one fresh correlation id, awaiting every append. Holdings in a
foreign currency are first valued in the request's base currency through
the ``CurrencyConverter``. Each conversion audits under its own correlation
id with ``parent_correlation_id`` set to the run, so the run stream holds
exactly the four events above.

Failure handling: once CALC_STARTED has been attempted, any error (store,
conversion, allocation) is recorded as CALC_COMPLETED ``status="failed"``
with its message, logged, and re-raised. Input validation errors are raised
before anything is recorded.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence
from uuid import uuid4

from portfolio_calc.config import RecommendationsConfig
from portfolio_calc.currency.converter import CurrencyConverter
from portfolio_calc.errors import RecommendationError
from portfolio_calc.events.store import EventStore
from portfolio_calc.models.currency import BatchConversionItem, ConversionOptions
from portfolio_calc.models.events import (
    CalcCompletedEvent,
    CalcStartedEvent,
    RecsComputedEvent,
    RecsInputsCapturedEvent,
)
from portfolio_calc.models.recommendation import (
    AllocationTargetsSnapshot,
    AssetAllocationContext,
    PortfolioAssetState,
    PortfolioHolding,
    PortfolioStateSnapshot,
    RecommendationRequest,
    RecommendationResult,
    RecommendedItemSummary,
)
from portfolio_calc.recommendations.allocator import (
    build_allocation_context,
    generate_recommendation_items,
    total_allocated,
    validate_total_equals,
)
from portfolio_calc.utils.decimal_utils import (
    ZERO,
    decimal_context,
    parse_decimal,
    sum_decimals,
    to_fixed,
)
from portfolio_calc.utils.time_utils import elapsed_ms, monotonic_ms, utcnow

logger = logging.getLogger(__name__)


def _parse_amount(value: str, field: str) -> Decimal:
    try:
        amount = parse_decimal(value)
    except ValueError as exc:
        raise RecommendationError(
            f"{field} must be a decimal, got {value!r}", details={field: value}
        ) from exc
    if amount < ZERO:
        raise RecommendationError(
            f"{field} must not be negative, got {value}", details={field: value}
        )
    return amount


class RecommendationGenerator:
    """Produces recommendations and their audit events.

    Args:
        event_store: Receives the four-event sequence.
        converter:   Values foreign-currency holdings; required only when a
            holding's currency differs from the request's base currency.
        config:      ``[recommendations]`` config section.
        clock:       Source of ``generated_at`` / event timestamps.
    """

    def __init__(
        self,
        event_store: EventStore,
        converter: Optional[CurrencyConverter] = None,
        config: Optional[RecommendationsConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.event_store = event_store
        self.converter = converter
        self.config = config or RecommendationsConfig()
        self._clock = clock

    async def generate(self, user_id: str, request: RecommendationRequest) -> RecommendationResult:
        """Generate recommendations for ``request``.

        Raises:
            RecommendationError: Negative or non-decimal contribution/dividends
                (nothing recorded), or a foreign-currency holding without a
                converter (recorded as failed).
            Exception: Any store or conversion error, after CALC_COMPLETED
                ``status="failed"`` has been recorded.
        """
        contribution = _parse_amount(request.contribution, "contribution")
        dividends = _parse_amount(request.dividends, "dividends")
        with decimal_context():
            total_investable = to_fixed(contribution + dividends)

        correlation_id = str(uuid4())
        started_ms = monotonic_ms()
        logger.info(
            "Recommendation run starting | portfolio=%s | total_investable=%s | correlation_id=%s",
            request.portfolio_id, total_investable, correlation_id,
        )

        try:
            await self.event_store.append(
                user_id,
                CalcStartedEvent(
                    correlation_id=correlation_id,
                    user_id=user_id,
                    timestamp=self._clock(),
                ),
            )

            holdings = await self._value_in_base(request, correlation_id)
            contexts = build_allocation_context(
                holdings,
                request.classes,
                request.subclasses,
                request.scores,
                default_score=self.config.default_score,
            )

            await self.event_store.append(
                user_id,
                RecsInputsCapturedEvent(
                    correlation_id=correlation_id,
                    portfolio_state=self._portfolio_snapshot(request, contexts),
                    allocation_targets=AllocationTargetsSnapshot(
                        classes=list(request.classes),
                        subclasses=list(request.subclasses),
                    ),
                    scores=list(request.scores),
                    contribution=request.contribution,
                    dividends=request.dividends,
                    total_investable=total_investable,
                ),
            )

            items = generate_recommendation_items(contexts, total_investable)
            allocated = to_fixed(total_allocated(items))
            if not validate_total_equals(items, total_investable, self.config.total_tolerance):
                logger.warning(
                    "Allocated total differs from investable amount | allocated=%s | "
                    "total_investable=%s | correlation_id=%s",
                    allocated, total_investable, correlation_id,
                )
            recommendation_id = str(uuid4())

            await self.event_store.append(
                user_id,
                RecsComputedEvent(
                    correlation_id=correlation_id,
                    recommendation_id=recommendation_id,
                    total_investable=total_investable,
                    total_allocated=allocated,
                    asset_count=len(items),
                    items=[
                        RecommendedItemSummary(
                            asset_id=item.asset_id,
                            symbol=item.symbol,
                            recommended_amount=item.recommended_amount,
                            priority=item.priority,
                            is_over_allocated=item.is_over_allocated,
                        )
                        for item in items
                    ],
                ),
            )

            duration_ms = elapsed_ms(started_ms)
            await self.event_store.append(
                user_id,
                CalcCompletedEvent(
                    correlation_id=correlation_id,
                    duration_ms=duration_ms,
                    asset_count=len(contexts),
                    status="success",
                ),
            )

        except Exception as exc:
            await self._record_failure(user_id, correlation_id, started_ms, exc)
            logger.error(
                "Recommendation run FAILED: %s | portfolio=%s | correlation_id=%s",
                exc, request.portfolio_id, correlation_id,
            )
            raise

        logger.info(
            "Recommendation run completed | items=%d | allocated=%s | duration_ms=%d | correlation_id=%s",
            len(items), allocated, duration_ms, correlation_id,
        )

        return RecommendationResult(
            recommendation_id=recommendation_id,
            correlation_id=correlation_id,
            user_id=user_id,
            portfolio_id=request.portfolio_id,
            contribution=request.contribution,
            dividends=request.dividends,
            total_investable=total_investable,
            total_allocated=allocated,
            base_currency=request.base_currency,
            items=items,
            generated_at=self._clock(),
            duration_ms=duration_ms,
        )

    async def _record_failure(
        self, user_id: str, correlation_id: str, started_ms: float, exc: Exception
    ) -> None:
        try:
            await self.event_store.append(
                user_id,
                CalcCompletedEvent(
                    correlation_id=correlation_id,
                    duration_ms=elapsed_ms(started_ms),
                    asset_count=0,
                    status="failed",
                    error_message=str(exc) or exc.__class__.__name__,
                ),
            )
        except Exception as emit_exc:
            logger.error(
                "Failed to record CALC_COMPLETED(failed): %s | correlation_id=%s",
                emit_exc, correlation_id,
            )

    async def _value_in_base(
        self, request: RecommendationRequest, correlation_id: str
    ) -> list[PortfolioHolding]:
        """Return holdings with ``value`` expressed in the base currency."""
        base = request.base_currency
        foreign = [
            idx for idx, h in enumerate(request.holdings)
            if not h.is_ignored and h.currency and h.currency.upper() != base
        ]
        if not foreign:
            return list(request.holdings)

        if self.converter is None:
            raise RecommendationError(
                "Holdings in a foreign currency need a currency converter.",
                details={"base_currency": base},
            )

        results = await self.converter.convert_batch(
            [
                BatchConversionItem(
                    value=request.holdings[idx].value,
                    from_currency=request.holdings[idx].currency or base,
                )
                for idx in foreign
            ],
            base,
            ConversionOptions(parent_correlation_id=correlation_id),
        )
        converted = {idx: result for idx, result in zip(foreign, results)}

        valued: list[PortfolioHolding] = []
        for idx, holding in enumerate(request.holdings):
            if idx in converted:
                holding = holding.model_copy(
                    update={"value": converted[idx].value, "currency": base}
                )
            valued.append(holding)
        return valued

    @staticmethod
    def _portfolio_snapshot(
        request: RecommendationRequest, contexts: Sequence[AssetAllocationContext]
    ) -> PortfolioStateSnapshot:
        total = sum_decimals([parse_decimal(ctx.current_value) for ctx in contexts])
        return PortfolioStateSnapshot(
            portfolio_id=request.portfolio_id,
            total_value=to_fixed(total),
            base_currency=request.base_currency,
            assets=[
                PortfolioAssetState(
                    asset_id=ctx.asset_id,
                    symbol=ctx.symbol,
                    current_value=ctx.current_value,
                    current_allocation=ctx.current_allocation,
                )
                for ctx in contexts
            ],
        )
