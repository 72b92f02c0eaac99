"""Tests for database schema creation and constraints."""

from __future__ import annotations

import sqlite3

import pytest

from portfolio_calc.config import DatabaseConfig
from portfolio_calc.db.connection import connect_from_config, get_connection
from portfolio_calc.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        existing = get_existing_tables(in_memory_db)
        for table in ALL_TABLE_NAMES:
            assert table in existing, f"Missing table: {table}"

    def test_idempotent_double_apply(self, in_memory_db):
        apply_schema(in_memory_db)
        apply_schema(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_key_indexes_created(self, in_memory_db):
        rows = in_memory_db.execute(
            "SELECT name FROM sqlite_master WHERE type='index';"
        ).fetchall()
        names = {r["name"] for r in rows}
        assert "idx_calc_events_correlation" in names
        assert "idx_calc_events_user_type" in names
        assert "idx_rates_pair_date" in names


class TestConstraints:
    def test_unknown_event_type_rejected(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO calculation_events "
                "(correlation_id, user_id, event_type, payload, created_at) "
                "VALUES ('c', 'u', 'NOT_AN_EVENT', '{}', '2026-03-02T00:00:00+00:00');"
            )

    def test_one_rate_per_pair_and_day(self, in_memory_db):
        sql = (
            "INSERT INTO exchange_rates "
            "(base_currency, target_currency, rate, source, fetched_at, rate_date) "
            "VALUES ('USD', 'BRL', ?, 'ecb', '2026-03-02T00:00:00+00:00', '2026-03-02');"
        )
        in_memory_db.execute(sql, ("5.0",))
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(sql, ("5.1",))

    def test_rate_stored_as_text(self, in_memory_db):
        in_memory_db.execute(
            "INSERT INTO exchange_rates "
            "(base_currency, target_currency, rate, source, fetched_at, rate_date) "
            "VALUES ('USD', 'BRL', '5.10', 'ecb', '2026-03-02T00:00:00+00:00', '2026-03-02');"
        )
        row = in_memory_db.execute("SELECT rate, typeof(rate) AS t FROM exchange_rates;").fetchone()
        assert row["rate"] == "5.10"
        assert row["t"] == "text"


class TestConnection:
    def test_file_database_created(self, tmp_path):
        db_path = tmp_path / "nested" / "calc.db"
        with get_connection(str(db_path)) as conn:
            apply_schema(conn)
            assert conn.execute("PRAGMA foreign_keys;").fetchone()[0] == 1
        assert db_path.exists()

    def test_rollback_on_error(self, tmp_path):
        db_path = str(tmp_path / "calc.db")
        with get_connection(db_path) as conn:
            apply_schema(conn)

        with pytest.raises(RuntimeError):
            with get_connection(db_path) as conn:
                conn.execute(
                    "INSERT INTO exchange_rates "
                    "(base_currency, target_currency, rate, source, fetched_at, rate_date) "
                    "VALUES ('USD', 'BRL', '5', 'ecb', '2026-03-02T00:00:00+00:00', '2026-03-02');"
                )
                raise RuntimeError("abort")

        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM exchange_rates;").fetchone()[0] == 0

    def test_connect_from_config(self, tmp_path):
        cfg = DatabaseConfig(db_path=str(tmp_path / "cfg.db"), wal_mode=False)
        with connect_from_config(cfg) as conn:
            apply_schema(conn)
            assert "calculation_events" in get_existing_tables(conn)
