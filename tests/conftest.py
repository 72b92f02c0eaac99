"""
Shared pytest fixtures for the portfolio-calc test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``event_store`` / ``sqlite_event_store``: empty audit stores.
  - Sample criteria, assets and exchange rates used across test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from typing import Generator

import pytest

from portfolio_calc.db.schema import apply_schema
from portfolio_calc.events.store import InMemoryEventStore, SqliteEventStore
from portfolio_calc.models.criteria import AssetWithFundamentals, CriterionRule
from portfolio_calc.models.currency import ExchangeRate

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema is applied idempotently.
    Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def sqlite_event_store(in_memory_db) -> SqliteEventStore:
    return SqliteEventStore(in_memory_db)


# ── Sample domain objects ─────────────────────────────────────────────────────

@pytest.fixture
def sample_criteria() -> list[CriterionRule]:
    """Three rules: dividend yield, P/E band and ROE floor."""
    return [
        CriterionRule(
            id="c-dy",
            name="Dividend yield above 5%",
            metric="dividend_yield",
            operator="gt",
            value="5",
            points=10,
            sort_order=0,
        ),
        CriterionRule(
            id="c-pe",
            name="P/E between 5 and 15",
            metric="pe_ratio",
            operator="between",
            value="5",
            value2="15",
            points=5,
            sort_order=1,
        ),
        CriterionRule(
            id="c-roe",
            name="ROE at least 15%",
            metric="roe",
            operator="gte",
            value="15",
            points=3,
            sort_order=2,
        ),
    ]


@pytest.fixture
def sample_assets() -> list[AssetWithFundamentals]:
    """Three assets; ``asset-3`` is missing its P/E ratio."""
    return [
        AssetWithFundamentals(
            id="asset-1",
            symbol="PETR4",
            fundamentals={"dividend_yield": "8.5", "pe_ratio": "4.2", "roe": "22.1"},
        ),
        AssetWithFundamentals(
            id="asset-2",
            symbol="ITUB4",
            fundamentals={"dividend_yield": "6.1", "pe_ratio": "9.0", "roe": "18.0"},
        ),
        AssetWithFundamentals(
            id="asset-3",
            symbol="WEGE3",
            fundamentals={"dividend_yield": "1.2", "pe_ratio": None, "roe": "25.0"},
        ),
    ]


@pytest.fixture
def usd_brl_rate() -> ExchangeRate:
    """``1 USD = 5.0 BRL`` fetched one hour before ``FIXED_NOW``."""
    return ExchangeRate(
        base_currency="USD",
        target_currency="BRL",
        rate="5.0",
        source="manual",
        fetched_at=datetime(2026, 3, 2, 11, 0, 0, tzinfo=timezone.utc),
        rate_date=date(2026, 3, 2),
    )


@pytest.fixture
def brl_usd_rate() -> ExchangeRate:
    """``1 BRL = 0.2 USD`` fetched one hour before ``FIXED_NOW``."""
    return ExchangeRate(
        base_currency="BRL",
        target_currency="USD",
        rate="0.2",
        source="manual",
        fetched_at=datetime(2026, 3, 2, 11, 0, 0, tzinfo=timezone.utc),
        rate_date=date(2026, 3, 2),
    )
