"""
Currency conversion over stored exchange rates.

    value_target = value_source × rate        (rate: 1 source = rate target)

Rules
-----
- Codes are upper-cased, then checked against the supported set
  (``INVALID_CURRENCY``). Values must be non-negative decimals
  (``INVALID_VALUE``).
- Same currency: the value is re-formatted to 4 dp with rate ``"1"`` and
  source ``"same-currency"``; the repository is not consulted.
- Otherwise the direct pair is looked up, then the inverse pair (applied as
  ``1 / rate``). Neither → ``RATE_NOT_FOUND``. Rates are never fetched live.
- The product is computed at full precision and rounded once, to 4 dp.
- A rate strictly older than the stale threshold (24 h) is still used, but
  flagged ``is_stale_rate`` and logged at WARNING.

Audit
-----
Each conversion schedules a CURRENCY_CONVERTED append as an asyncio task
and returns without waiting for it. A failed append is logged at ERROR and
never reaches the caller. ``drain()`` waits for pending appends.
``options.parent_correlation_id`` links the event to the run that asked for
the conversion without adding it to that run's stream.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence, Union
from uuid import uuid4

from portfolio_calc.config import CurrencyConfig
from portfolio_calc.currency.rates import RateRepository
from portfolio_calc.errors import CurrencyConversionError
from portfolio_calc.events.store import EventStore
from portfolio_calc.models.currency import (
    BatchConversionItem,
    ConversionOptions,
    CurrencyConversionResult,
    ExchangeRate,
)
from portfolio_calc.models.events import CurrencyConvertedEvent
from portfolio_calc.utils.decimal_utils import (
    ONE,
    ZERO,
    decimal_context,
    parse_decimal,
    to_fixed,
    to_plain_string,
)
from portfolio_calc.utils.time_utils import age_hours, is_older_than, utcnow

logger = logging.getLogger(__name__)

SAME_CURRENCY_SOURCE = "same-currency"

BatchOutcome = Union[CurrencyConversionResult, Exception]


class CurrencyConverter:
    """Converts decimal amounts between supported currencies.

    Args:
        repository:  Where stored rates are read from.
        event_store: Receives CURRENCY_CONVERTED audit events; ``None``
            disables them.
        config:      ``[currency]`` config section (supported codes, stale
            threshold, event switch, system user id).
        clock:       Returns "now" for staleness checks.
    """

    def __init__(
        self,
        repository: RateRepository,
        event_store: Optional[EventStore] = None,
        config: Optional[CurrencyConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        cfg = config or CurrencyConfig()
        self.repository = repository
        self.event_store = event_store
        self.supported = tuple(cfg.supported)
        self.stale_threshold = timedelta(hours=cfg.stale_threshold_hours)
        self.emit_events = cfg.emit_events and event_store is not None
        self.system_user_id = cfg.system_user_id
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    # ── Public API ──────────────────────────────────────────────────────────────

    async def convert(
        self,
        value: Any,
        from_currency: str,
        to_currency: str,
        options: Optional[ConversionOptions] = None,
    ) -> CurrencyConversionResult:
        """Convert one amount.

        Raises:
            CurrencyConversionError: ``INVALID_CURRENCY``, ``INVALID_VALUE``
                or ``RATE_NOT_FOUND``.
        """
        opts = options or ConversionOptions()
        source = self._validate_currency(from_currency, "from_currency")
        target = self._validate_currency(to_currency, "to_currency")
        amount = self._validate_value(value)

        if source == target:
            result = CurrencyConversionResult(
                value=to_fixed(amount),
                from_currency=source,
                to_currency=target,
                rate="1",
                rate_date=opts.rate_date or self._clock().date(),
                rate_source=SAME_CURRENCY_SOURCE,
                is_stale_rate=False,
            )
            self._emit(result, amount, opts)
            return result

        rate, rate_text, stored = await self._resolve_rate(source, target, opts.rate_date)
        is_stale = is_older_than(stored.fetched_at, self.stale_threshold, now=self._clock())
        if is_stale:
            logger.warning(
                "Using stale exchange rate",
                extra={
                    "from_currency": source,
                    "to_currency": target,
                    "rate_date": stored.rate_date.isoformat(),
                    "fetched_at": stored.fetched_at.isoformat(),
                    "age_hours": round(age_hours(stored.fetched_at, self._clock()), 2),
                },
            )

        with decimal_context():
            converted = amount * rate

        result = CurrencyConversionResult(
            value=to_fixed(converted),
            from_currency=source,
            to_currency=target,
            rate=rate_text,
            rate_date=stored.rate_date,
            rate_source=stored.source,
            is_stale_rate=is_stale,
        )
        self._emit(result, amount, opts)
        return result

    async def convert_batch_settled(
        self,
        items: Sequence[BatchConversionItem],
        to_currency: str,
        options: Optional[ConversionOptions] = None,
    ) -> list[BatchOutcome]:
        """Convert every item concurrently; return a result or the error per item.

        Output order matches ``items``. One item failing does not affect
        the others.
        """
        outcomes = await asyncio.gather(
            *(self.convert(item.value, item.from_currency, to_currency, options) for item in items),
            return_exceptions=True,
        )
        failed = sum(1 for o in outcomes if isinstance(o, BaseException))
        if failed:
            logger.warning(
                "Batch conversion finished with failures | items=%d | failed=%d",
                len(items), failed,
            )
        return list(outcomes)

    async def convert_batch(
        self,
        items: Sequence[BatchConversionItem],
        to_currency: str,
        options: Optional[ConversionOptions] = None,
    ) -> list[CurrencyConversionResult]:
        """Convert every item concurrently.

        Raises:
            CurrencyConversionError: The first failing item's error (in item
                order), once every item has settled.
        """
        outcomes = await self.convert_batch_settled(items, to_currency, options)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes  # type: ignore[return-value]

    async def drain(self) -> None:
        """Wait for every scheduled audit append to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_events(self) -> int:
        return len(self._pending)

    # ── Validation ──────────────────────────────────────────────────────────────

    def _validate_currency(self, code: Any, param: str) -> str:
        normalized = code.strip().upper() if isinstance(code, str) else ""
        if normalized not in self.supported:
            raise CurrencyConversionError(
                f"Invalid {param}: {code}. Supported currencies: {', '.join(self.supported)}",
                code="INVALID_CURRENCY",
                details={"currency": code, "param": param, "supported": list(self.supported)},
            )
        return normalized

    @staticmethod
    def _validate_value(value: Any) -> Decimal:
        try:
            amount = parse_decimal(value)
        except ValueError as exc:
            raise CurrencyConversionError(
                f"Invalid decimal value: {value!r}",
                code="INVALID_VALUE",
                details={"value": str(value)},
            ) from exc
        if amount < ZERO:
            raise CurrencyConversionError(
                f"Value must not be negative: {value}",
                code="INVALID_VALUE",
                details={"value": str(value)},
            )
        return amount

    # ── Rate lookup ─────────────────────────────────────────────────────────────

    async def _resolve_rate(
        self, source: str, target: str, as_of: Optional[date]
    ) -> tuple[Decimal, str, ExchangeRate]:
        """Return ``(rate, rate_text, stored_record)`` for source → target."""
        direct = await self.repository.get_rate(source, target, as_of)
        if direct is not None:
            return parse_decimal(direct.rate), direct.rate, direct

        inverse = await self.repository.get_rate(target, source, as_of)
        if inverse is not None:
            with decimal_context():
                rate = ONE / parse_decimal(inverse.rate)
            logger.debug(
                "Using inverse rate %s→%s=%s for %s→%s",
                target, source, inverse.rate, source, target,
            )
            return rate, to_plain_string(rate), inverse

        raise CurrencyConversionError(
            f"Exchange rate not found for {source} → {target}",
            code="RATE_NOT_FOUND",
            details={
                "from_currency": source,
                "to_currency": target,
                "requested_date": as_of.isoformat() if as_of else None,
            },
        )

    # ── Audit ───────────────────────────────────────────────────────────────────

    def _emit(
        self,
        result: CurrencyConversionResult,
        source_value: Decimal,
        options: ConversionOptions,
    ) -> None:
        if not self.emit_events:
            return

        event = CurrencyConvertedEvent(
            correlation_id=options.correlation_id or str(uuid4()),
            source_value=to_plain_string(source_value),
            source_currency=result.from_currency,
            target_currency=result.to_currency,
            rate=result.rate,
            rate_date=result.rate_date,
            result_value=result.value,
            is_stale_rate=result.is_stale_rate,
            timestamp=self._clock(),
            parent_correlation_id=options.parent_correlation_id,
        )
        logger.info(
            "Currency conversion completed | %s %s → %s %s | correlation_id=%s",
            event.source_value, event.source_currency,
            event.result_value, event.target_currency, event.correlation_id,
            extra={"rate": event.rate, "is_stale_rate": event.is_stale_rate},
        )

        task = asyncio.create_task(self._append_event(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _append_event(self, event: CurrencyConvertedEvent) -> None:
        assert self.event_store is not None
        try:
            await self.event_store.append(self.system_user_id, event)
        except Exception as exc:
            logger.error(
                "Failed to store CURRENCY_CONVERTED event: %s | correlation_id=%s",
                exc, event.correlation_id,
            )
