"""Tests for portfolio_calc/utils/time_utils.py."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from portfolio_calc.utils.time_utils import (
    age_hours,
    elapsed_ms,
    ensure_utc,
    is_older_than,
    monotonic_ms,
    parse_iso_date,
    parse_iso_datetime,
    utcnow,
)

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)
DAY = timedelta(hours=24)


class TestStaleness:
    def test_23h59m_is_fresh(self):
        fetched = NOW - timedelta(hours=23, minutes=59)
        assert is_older_than(fetched, DAY, now=NOW) is False

    def test_24h01m_is_stale(self):
        fetched = NOW - timedelta(hours=24, minutes=1)
        assert is_older_than(fetched, DAY, now=NOW) is True

    def test_exactly_24h_is_not_stale(self):
        assert is_older_than(NOW - DAY, DAY, now=NOW) is False

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime(2026, 3, 1, 11, 0, 0)
        assert is_older_than(naive, DAY, now=NOW) is True

    def test_age_hours(self):
        assert age_hours(NOW - timedelta(hours=6), NOW) == pytest.approx(6.0)


class TestParsing:
    def test_z_suffix(self):
        parsed = parse_iso_datetime("2026-03-02T12:00:00Z")
        assert parsed == NOW
        assert parsed.tzinfo is not None

    def test_offset_converted_to_utc(self):
        parsed = parse_iso_datetime("2026-03-02T09:00:00-03:00")
        assert parsed == NOW

    def test_invalid_datetime_raises(self):
        with pytest.raises(ValueError):
            parse_iso_datetime("yesterday")

    def test_parse_date(self):
        assert parse_iso_date(" 2026-03-02 ") == date(2026, 3, 2)

    def test_invalid_date_raises(self):
        with pytest.raises(ValueError):
            parse_iso_date("2026-13-40")


class TestClock:
    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo is not None

    def test_ensure_utc_converts(self):
        tz = timezone(timedelta(hours=2))
        assert ensure_utc(datetime(2026, 3, 2, 14, 0, tzinfo=tz)) == NOW

    def test_elapsed_ms_never_negative(self):
        assert elapsed_ms(monotonic_ms() + 10_000) == 0
