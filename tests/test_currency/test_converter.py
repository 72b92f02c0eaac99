"""
Tests for portfolio_calc/currency/converter.py.

What we test
------------
convert():
  - 1000 BRL at 0.2 → "200.0000" via the direct pair.
  - The inverse pair is used when only USD→BRL 5.0 is stored.
  - Half-up rounding happens once, on the final product.
  - Same currency: rate "1", source "same-currency", no repository lookup.
  - Unsupported or non-string codes → INVALID_CURRENCY; lower-case codes are
    normalised.
  - Negative or non-numeric values → INVALID_VALUE.
  - No rate either way → RATE_NOT_FOUND.
  - ``rate_date`` selects the most recent rate on or before that day.
  - Rates older than 24 h are used but flagged ``is_stale_rate`` (23h59m is
    fresh, 24h01m is stale) and logged.

Audit events:
  - Each conversion schedules a CURRENCY_CONVERTED append; ``drain()`` waits.
  - A supplied correlation id is carried through; a parent correlation id is
    recorded on the event while each conversion keeps a fresh id.
  - A failing event store never reaches the caller.
  - ``emit_events = false`` and a missing store disable events.

Batches:
  - convert_batch_settled isolates failures per item and keeps order.
  - convert_batch raises the first failing item's error.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from portfolio_calc.config import CurrencyConfig
from portfolio_calc.currency.converter import SAME_CURRENCY_SOURCE, CurrencyConverter
from portfolio_calc.currency.rates import InMemoryRateRepository
from portfolio_calc.errors import CurrencyConversionError
from portfolio_calc.events.store import InMemoryEventStore
from portfolio_calc.models.currency import (
    BatchConversionItem,
    ConversionOptions,
    CurrencyConversionResult,
    ExchangeRate,
)
from portfolio_calc.models.events import CURRENCY_CONVERTED, CurrencyConvertedEvent

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _clock() -> datetime:
    return NOW


def _rate(base: str, target: str, rate: str, *, age=timedelta(hours=1), day=date(2026, 3, 2)):
    return ExchangeRate(
        base_currency=base,
        target_currency=target,
        rate=rate,
        source="ecb",
        fetched_at=NOW - age,
        rate_date=day,
    )


def _converter(*rates, store=None, config=None) -> CurrencyConverter:
    return CurrencyConverter(
        InMemoryRateRepository(rates),
        event_store=store,
        config=config,
        clock=_clock,
    )


class _BrokenStore(InMemoryEventStore):
    async def append(self, user_id, event):
        raise RuntimeError("audit sink down")


# ── Conversion ─────────────────────────────────────────────────────────────────

class TestConvert:
    @pytest.mark.asyncio
    async def test_direct_rate(self, brl_usd_rate):
        result = await _converter(brl_usd_rate).convert("1000", "BRL", "USD")
        assert result.value == "200.0000"
        assert result.rate == "0.2"
        assert result.rate_source == "manual"
        assert result.rate_date == date(2026, 3, 2)

    @pytest.mark.asyncio
    async def test_inverse_rate(self, usd_brl_rate):
        result = await _converter(usd_brl_rate).convert("1000", "BRL", "USD")
        assert result.value == "200.0000"
        assert result.rate == "0.2"

    @pytest.mark.asyncio
    async def test_direct_preferred_over_inverse(self):
        converter = _converter(_rate("BRL", "USD", "0.19"), _rate("USD", "BRL", "5.0"))
        result = await converter.convert("100", "BRL", "USD")
        assert result.value == "19.0000"

    @pytest.mark.asyncio
    async def test_rounds_once_half_up(self):
        converter = _converter(_rate("EUR", "USD", "1.08345"))
        result = await converter.convert("10", "EUR", "USD")
        # 10 × 1.08345 = 10.8345 exactly
        assert result.value == "10.8345"
        result = await converter.convert("0.5", "EUR", "USD")
        # 0.541725 → 0.5417
        assert result.value == "0.5417"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "rate, expected", [("100.12345", "100.1235"), ("100.12344", "100.1234")]
    )
    async def test_fifth_digit_rounding(self, rate, expected):
        result = await _converter(_rate("EUR", "USD", rate)).convert("1", "EUR", "USD")
        assert result.value == expected

    @pytest.mark.asyncio
    async def test_lower_case_codes_normalised(self, brl_usd_rate):
        result = await _converter(brl_usd_rate).convert("10", "brl", "usd")
        assert (result.from_currency, result.to_currency) == ("BRL", "USD")

    @pytest.mark.asyncio
    async def test_accepts_numeric_value(self, brl_usd_rate):
        result = await _converter(brl_usd_rate).convert(1000, "BRL", "USD")
        assert result.value == "200.0000"

    @pytest.mark.asyncio
    async def test_zero_value(self, brl_usd_rate):
        result = await _converter(brl_usd_rate).convert("0", "BRL", "USD")
        assert result.value == "0.0000"


class TestSameCurrency:
    @pytest.mark.asyncio
    async def test_no_lookup(self):
        repo = InMemoryRateRepository()
        converter = CurrencyConverter(repo, clock=_clock)
        result = await converter.convert("123.456789", "USD", "USD")

        assert result.value == "123.4568"
        assert result.rate == "1"
        assert result.rate_source == SAME_CURRENCY_SOURCE
        assert result.is_stale_rate is False
        assert result.rate_date == NOW.date()
        assert repo.lookups == 0

    @pytest.mark.asyncio
    async def test_requested_date_echoed(self):
        converter = _converter()
        opts = ConversionOptions(rate_date=date(2025, 1, 1))
        result = await converter.convert("1", "EUR", "EUR", opts)
        assert result.rate_date == date(2025, 1, 1)


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "src, dst",
        [("XYZ", "USD"), ("USD", "BTC"), ("", "USD"), (5, "USD"), ("USD", None)],
    )
    async def test_invalid_currency(self, src, dst):
        with pytest.raises(CurrencyConversionError) as exc_info:
            await _converter().convert("1", src, dst)
        assert exc_info.value.code == "INVALID_CURRENCY"
        assert exc_info.value.category == "validation"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["-1", "abc", "", None, "NaN"])
    async def test_invalid_value(self, value, brl_usd_rate):
        with pytest.raises(CurrencyConversionError) as exc_info:
            await _converter(brl_usd_rate).convert(value, "BRL", "USD")
        assert exc_info.value.code == "INVALID_VALUE"

    @pytest.mark.asyncio
    async def test_rate_not_found(self):
        with pytest.raises(CurrencyConversionError) as exc_info:
            await _converter(_rate("EUR", "USD", "1.1")).convert("1", "BRL", "USD")
        assert exc_info.value.code == "RATE_NOT_FOUND"
        assert exc_info.value.details["from_currency"] == "BRL"

    @pytest.mark.asyncio
    async def test_currency_outside_configured_set(self, brl_usd_rate):
        config = CurrencyConfig(supported=["USD", "EUR"])
        with pytest.raises(CurrencyConversionError) as exc_info:
            await _converter(brl_usd_rate, config=config).convert("1", "BRL", "USD")
        assert exc_info.value.code == "INVALID_CURRENCY"


class TestRateDate:
    @pytest.mark.asyncio
    async def test_on_or_before_requested_day(self):
        converter = _converter(
            _rate("BRL", "USD", "0.18", day=date(2026, 2, 1)),
            _rate("BRL", "USD", "0.19", day=date(2026, 2, 15)),
            _rate("BRL", "USD", "0.20", day=date(2026, 3, 2)),
        )
        opts = ConversionOptions(rate_date=date(2026, 2, 20))
        result = await converter.convert("100", "BRL", "USD", opts)
        assert result.value == "19.0000"
        assert result.rate_date == date(2026, 2, 15)

    @pytest.mark.asyncio
    async def test_latest_when_no_date(self):
        converter = _converter(
            _rate("BRL", "USD", "0.18", day=date(2026, 2, 1)),
            _rate("BRL", "USD", "0.20", day=date(2026, 3, 2)),
        )
        result = await converter.convert("100", "BRL", "USD")
        assert result.value == "20.0000"

    @pytest.mark.asyncio
    async def test_nothing_before_requested_day(self):
        converter = _converter(_rate("BRL", "USD", "0.2", day=date(2026, 3, 2)))
        opts = ConversionOptions(rate_date=date(2026, 1, 1))
        with pytest.raises(CurrencyConversionError) as exc_info:
            await converter.convert("1", "BRL", "USD", opts)
        assert exc_info.value.code == "RATE_NOT_FOUND"


class TestStaleness:
    @pytest.mark.asyncio
    async def test_23h59m_is_fresh(self):
        converter = _converter(_rate("BRL", "USD", "0.2", age=timedelta(hours=23, minutes=59)))
        result = await converter.convert("1", "BRL", "USD")
        assert result.is_stale_rate is False

    @pytest.mark.asyncio
    async def test_24h01m_is_stale_but_used(self, caplog):
        converter = _converter(_rate("BRL", "USD", "0.2", age=timedelta(hours=24, minutes=1)))
        with caplog.at_level(logging.WARNING, logger="portfolio_calc.currency.converter"):
            result = await converter.convert("1000", "BRL", "USD")

        assert result.is_stale_rate is True
        assert result.value == "200.0000"
        record = next(r for r in caplog.records if r.getMessage() == "Using stale exchange rate")
        assert record.from_currency == "BRL"
        assert record.to_currency == "USD"

    @pytest.mark.asyncio
    async def test_custom_threshold(self):
        config = CurrencyConfig(stale_threshold_hours=1)
        converter = _converter(
            _rate("BRL", "USD", "0.2", age=timedelta(hours=2)), config=config
        )
        assert (await converter.convert("1", "BRL", "USD")).is_stale_rate is True


# ── Audit events ───────────────────────────────────────────────────────────────

class TestAuditEvents:
    @pytest.mark.asyncio
    async def test_event_emitted_after_drain(self, brl_usd_rate):
        store = InMemoryEventStore()
        converter = _converter(brl_usd_rate, store=store)
        await converter.convert("1000", "BRL", "USD")
        await converter.drain()

        (stored,) = store.events
        assert stored.event_type == CURRENCY_CONVERTED
        assert stored.user_id == "system"
        event = stored.payload
        assert isinstance(event, CurrencyConvertedEvent)
        assert event.source_value == "1000"
        assert event.result_value == "200.0000"
        assert event.rate == "0.2"
        assert event.timestamp == NOW
        assert converter.pending_events == 0

    @pytest.mark.asyncio
    async def test_same_currency_emits_event(self):
        store = InMemoryEventStore()
        converter = _converter(store=store)
        await converter.convert("5", "USD", "USD")
        await converter.drain()
        assert store.events[0].payload.rate == "1"

    @pytest.mark.asyncio
    async def test_correlation_id_carried(self, brl_usd_rate):
        store = InMemoryEventStore()
        converter = _converter(brl_usd_rate, store=store)
        await converter.convert("1", "BRL", "USD", ConversionOptions(correlation_id="calc-9"))
        await converter.drain()
        assert store.events[0].correlation_id == "calc-9"

    @pytest.mark.asyncio
    async def test_fresh_correlation_ids_by_default(self, brl_usd_rate):
        store = InMemoryEventStore()
        converter = _converter(brl_usd_rate, store=store)
        await converter.convert("1", "BRL", "USD")
        await converter.convert("2", "BRL", "USD")
        await converter.drain()
        ids = {e.correlation_id for e in store.events}
        assert len(ids) == 2

    @pytest.mark.asyncio
    async def test_parent_correlation_id_recorded(self, brl_usd_rate):
        store = InMemoryEventStore()
        converter = _converter(brl_usd_rate, store=store)
        opts = ConversionOptions(parent_correlation_id="run-1")
        await converter.convert_batch(
            [BatchConversionItem(value="1", from_currency="BRL"),
             BatchConversionItem(value="2", from_currency="BRL")],
            "USD",
            opts,
        )
        await converter.drain()

        assert await store.get_by_correlation_id("run-1") == []
        assert {e.payload.parent_correlation_id for e in store.events} == {"run-1"}
        assert len({e.correlation_id for e in store.events}) == 2

    @pytest.mark.asyncio
    async def test_store_failure_swallowed(self, brl_usd_rate, caplog):
        converter = _converter(brl_usd_rate, store=_BrokenStore())
        with caplog.at_level(logging.ERROR, logger="portfolio_calc.currency.converter"):
            result = await converter.convert("1000", "BRL", "USD")
            await converter.drain()

        assert result.value == "200.0000"
        assert any("audit sink down" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_events_disabled(self, brl_usd_rate):
        store = InMemoryEventStore()
        converter = _converter(
            brl_usd_rate, store=store, config=CurrencyConfig(emit_events=False)
        )
        await converter.convert("1", "BRL", "USD")
        await converter.drain()
        assert store.events == []

    @pytest.mark.asyncio
    async def test_failed_conversion_emits_nothing(self):
        store = InMemoryEventStore()
        converter = _converter(store=store)
        with pytest.raises(CurrencyConversionError):
            await converter.convert("1", "BRL", "USD")
        await converter.drain()
        assert store.events == []


# ── Batches ────────────────────────────────────────────────────────────────────

class TestBatch:
    @pytest.mark.asyncio
    async def test_settled_isolates_failures(self, brl_usd_rate):
        converter = _converter(brl_usd_rate, _rate("EUR", "USD", "1.1"))
        outcomes = await converter.convert_batch_settled(
            [
                BatchConversionItem(value="1000", from_currency="BRL"),
                BatchConversionItem(value="10", from_currency="GBP"),
                BatchConversionItem(value="10", from_currency="EUR"),
                BatchConversionItem(value="-5", from_currency="EUR"),
            ],
            "USD",
        )

        assert isinstance(outcomes[0], CurrencyConversionResult)
        assert outcomes[0].value == "200.0000"
        assert isinstance(outcomes[1], CurrencyConversionError)
        assert outcomes[1].code == "RATE_NOT_FOUND"
        assert outcomes[2].value == "11.0000"
        assert outcomes[3].code == "INVALID_VALUE"

    @pytest.mark.asyncio
    async def test_batch_raises_first_error_in_item_order(self, brl_usd_rate):
        converter = _converter(brl_usd_rate)
        with pytest.raises(CurrencyConversionError) as exc_info:
            await converter.convert_batch(
                [
                    BatchConversionItem(value="1", from_currency="BRL"),
                    BatchConversionItem(value="1", from_currency="XYZ"),
                    BatchConversionItem(value="1", from_currency="EUR"),
                ],
                "USD",
            )
        assert exc_info.value.code == "INVALID_CURRENCY"

    @pytest.mark.asyncio
    async def test_batch_success(self, brl_usd_rate):
        converter = _converter(brl_usd_rate)
        results = await converter.convert_batch(
            [
                BatchConversionItem(value=500, from_currency="BRL"),
                BatchConversionItem(value="7.5", from_currency="USD"),
            ],
            "USD",
        )
        assert [r.value for r in results] == ["100.0000", "7.5000"]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await _converter().convert_batch([], "USD") == []
