"""Tests for repository round-trip operations using in-memory SQLite."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from portfolio_calc.db.repositories.event_repo import CalculationEventRepository
from portfolio_calc.db.repositories.rate_repo import ExchangeRateRepository
from portfolio_calc.errors import EventStoreError, StorageError
from portfolio_calc.models.currency import ExchangeRate
from portfolio_calc.models.events import (
    CALC_COMPLETED,
    CALC_STARTED,
    CalcCompletedEvent,
    CalcStartedEvent,
)

TS = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _started(cid: str) -> CalcStartedEvent:
    return CalcStartedEvent(correlation_id=cid, user_id="user-1", timestamp=TS, market="BR")


def _completed(cid: str) -> CalcCompletedEvent:
    return CalcCompletedEvent(
        correlation_id=cid, duration_ms=5, asset_count=1, status="failed", error_message="boom"
    )


# ── Event repository ───────────────────────────────────────────────────────────

class TestCalculationEventRepository:
    def test_insert_and_fetch(self, in_memory_db):
        repo = CalculationEventRepository(in_memory_db)
        stored = repo.insert("user-1", _started("run-a"), created_at=TS)
        repo.commit()

        assert stored.event_id > 0
        (fetched,) = repo.get_by_correlation_id("run-a")
        assert fetched.event_id == stored.event_id
        assert fetched.created_at == TS
        assert fetched.payload == _started("run-a")

    def test_optional_fields_round_trip(self, in_memory_db):
        repo = CalculationEventRepository(in_memory_db)
        repo.insert("user-1", _completed("run-a"))
        (fetched,) = repo.get_by_correlation_id("run-a")
        assert fetched.payload.status == "failed"
        assert fetched.payload.error_message == "boom"

    def test_first_of_type_and_count(self, in_memory_db):
        repo = CalculationEventRepository(in_memory_db)
        repo.insert("user-1", _started("run-a"))
        repo.insert("user-1", _completed("run-a"))

        assert repo.count() == 2
        found = repo.get_first_of_type("run-a", CALC_COMPLETED)
        assert found is not None and found.event_type == CALC_COMPLETED
        assert repo.get_first_of_type("run-b", CALC_STARTED) is None

    def test_errors_use_event_store_codes(self, in_memory_db):
        repo = CalculationEventRepository(in_memory_db)
        in_memory_db.execute("DROP TABLE calculation_events;")
        with pytest.raises(EventStoreError) as exc_info:
            repo.count()
        assert exc_info.value.code == "EVENT_STORE_READ_FAILED"


# ── Rate repository ────────────────────────────────────────────────────────────

class TestExchangeRateRepository:
    def _rate(self, rate: str, day: date, fetched_at: datetime = TS) -> ExchangeRate:
        return ExchangeRate(
            base_currency="EUR",
            target_currency="USD",
            rate=rate,
            source="ecb",
            fetched_at=fetched_at,
            rate_date=day,
        )

    def test_upsert_replaces_same_day(self, in_memory_db):
        repo = ExchangeRateRepository(in_memory_db)
        first_id = repo.upsert(self._rate("1.08", date(2026, 3, 2)))
        second_id = repo.upsert(self._rate("1.09", date(2026, 3, 2)))

        assert first_id == second_id
        fetched = repo.get_rate("EUR", "USD")
        assert fetched is not None and fetched.rate == "1.09"

    def test_get_rate_as_of(self, in_memory_db):
        repo = ExchangeRateRepository(in_memory_db)
        repo.upsert(self._rate("1.05", date(2026, 2, 1)))
        repo.upsert(self._rate("1.08", date(2026, 3, 1)))

        assert repo.get_rate("EUR", "USD", date(2026, 2, 28)).rate == "1.05"
        assert repo.get_rate("EUR", "USD", date(2026, 3, 1)).rate == "1.08"
        assert repo.get_rate("EUR", "USD", date(2026, 1, 1)) is None

    def test_errors_use_storage_codes(self, in_memory_db):
        repo = ExchangeRateRepository(in_memory_db)
        in_memory_db.execute("DROP TABLE exchange_rates;")
        with pytest.raises(StorageError) as exc_info:
            repo.get_rate("EUR", "USD")
        assert exc_info.value.code == "STORAGE_READ_FAILED"
        assert not isinstance(exc_info.value, EventStoreError)
