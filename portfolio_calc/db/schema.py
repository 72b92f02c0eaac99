"""
SQLite schema DDL for the audit log and the exchange-rate store.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Tables:
  1. calculation_events  append-only audit log, one row per event; the
                         AUTOINCREMENT ``event_id`` fixes emission order
  2. exchange_rates      one rate per (base, target, rate_date)

Decimal values (rates, payload amounts) are stored as TEXT to keep every
digit; they are never stored as REAL.
"""

from __future__ import annotations

import logging
import sqlite3

from portfolio_calc.models.events import EVENT_TYPES

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_EVENT_TYPE_LIST = ", ".join(f"'{t}'" for t in EVENT_TYPES)

_DDL_CALCULATION_EVENTS = f"""
CREATE TABLE IF NOT EXISTS calculation_events (
    event_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    correlation_id  TEXT    NOT NULL,
    user_id         TEXT    NOT NULL,
    event_type      TEXT    NOT NULL CHECK (event_type IN ({_EVENT_TYPE_LIST})),
    payload         TEXT    NOT NULL,
    created_at      TEXT    NOT NULL
);
"""

_DDL_CALCULATION_EVENTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_calc_events_correlation
    ON calculation_events(correlation_id, event_id);
CREATE INDEX IF NOT EXISTS idx_calc_events_user
    ON calculation_events(user_id, event_id DESC);
CREATE INDEX IF NOT EXISTS idx_calc_events_user_type
    ON calculation_events(user_id, event_type, event_id DESC);
"""

_DDL_EXCHANGE_RATES = """
CREATE TABLE IF NOT EXISTS exchange_rates (
    rate_id         INTEGER PRIMARY KEY AUTOINCREMENT,
    base_currency   TEXT    NOT NULL,
    target_currency TEXT    NOT NULL,
    rate            TEXT    NOT NULL,
    source          TEXT    NOT NULL,
    fetched_at      TEXT    NOT NULL,
    rate_date       TEXT    NOT NULL,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (base_currency, target_currency, rate_date)
);
"""

_DDL_EXCHANGE_RATES_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_rates_pair_date
    ON exchange_rates(base_currency, target_currency, rate_date DESC);
"""

_ALL_DDL = [
    _DDL_CALCULATION_EVENTS,
    _DDL_CALCULATION_EVENTS_INDEXES,
    _DDL_EXCHANGE_RATES,
    _DDL_EXCHANGE_RATES_INDEXES,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "calculation_events",
    "exchange_rates",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``. Idempotent.

    Args:
        conn: An open ``sqlite3.Connection``.
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
