"""
Repository for the ``exchange_rates`` table.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Optional

from portfolio_calc.db.repositories.base import BaseRepository
from portfolio_calc.models.currency import ExchangeRate
from portfolio_calc.utils.time_utils import parse_iso_date, parse_iso_datetime

logger = logging.getLogger(__name__)


class ExchangeRateRepository(BaseRepository):
    """Read/write access to the ``exchange_rates`` table."""

    def upsert(self, rate: ExchangeRate) -> int:
        """Insert or replace the rate for (base, target, rate_date).

        Returns:
            The ``rate_id`` of the stored row.
        """
        self.execute(
            """
            INSERT INTO exchange_rates (
                base_currency, target_currency, rate, source, fetched_at, rate_date
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(base_currency, target_currency, rate_date) DO UPDATE SET
                rate       = excluded.rate,
                source     = excluded.source,
                fetched_at = excluded.fetched_at;
            """,
            (
                rate.base_currency,
                rate.target_currency,
                rate.rate,
                rate.source,
                rate.fetched_at.isoformat(),
                rate.rate_date.isoformat(),
            ),
            write=True,
        )
        row = self.fetchone(
            """
            SELECT rate_id FROM exchange_rates
            WHERE base_currency = ? AND target_currency = ? AND rate_date = ?;
            """,
            (rate.base_currency, rate.target_currency, rate.rate_date.isoformat()),
        )
        assert row is not None
        logger.debug(
            "Stored rate %s→%s=%s for %s", rate.base_currency,
            rate.target_currency, rate.rate, rate.rate_date,
        )
        return int(row["rate_id"])

    def get_rate(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        """Most recent rate on or before ``as_of``; latest overall when omitted."""
        if as_of is None:
            row = self.fetchone(
                """
                SELECT * FROM exchange_rates
                WHERE base_currency = ? AND target_currency = ?
                ORDER BY rate_date DESC, fetched_at DESC
                LIMIT 1;
                """,
                (base, target),
            )
        else:
            row = self.fetchone(
                """
                SELECT * FROM exchange_rates
                WHERE base_currency = ? AND target_currency = ? AND rate_date <= ?
                ORDER BY rate_date DESC, fetched_at DESC
                LIMIT 1;
                """,
                (base, target, as_of.isoformat()),
            )
        return self._row_to_rate(row) if row else None

    def list_rates(self, base: Optional[str] = None) -> list[ExchangeRate]:
        """All stored rates, newest day first, optionally for one base currency."""
        if base is None:
            rows = self.fetchall(
                "SELECT * FROM exchange_rates "
                "ORDER BY rate_date DESC, base_currency, target_currency;"
            )
        else:
            rows = self.fetchall(
                "SELECT * FROM exchange_rates WHERE base_currency = ? "
                "ORDER BY rate_date DESC, target_currency;",
                (base,),
            )
        return [self._row_to_rate(r) for r in rows]

    @staticmethod
    def _row_to_rate(row: sqlite3.Row) -> ExchangeRate:
        return ExchangeRate(
            base_currency=row["base_currency"],
            target_currency=row["target_currency"],
            rate=row["rate"],
            source=row["source"],
            fetched_at=parse_iso_datetime(row["fetched_at"]),
            rate_date=parse_iso_date(row["rate_date"]),
        )
