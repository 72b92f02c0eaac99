"""
Exchange-rate lookup contract used by the currency converter.

The converter only reads rates. Fetching them from a provider and storing
them is someone else's job (the ``add-rate`` CLI command, a daily job...).

Lookup semantics for ``get_rate(base, target, as_of)``:
  - ``as_of`` given → the most recent rate with ``rate_date <= as_of``
  - ``as_of`` None  → the latest rate available for the pair
  - nothing stored  → ``None``
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, Optional

from portfolio_calc.db.repositories.rate_repo import ExchangeRateRepository
from portfolio_calc.errors import StorageError
from portfolio_calc.models.currency import ExchangeRate

logger = logging.getLogger(__name__)


class RateRepository(ABC):
    """Read side of the exchange-rate store."""

    @abstractmethod
    async def get_rate(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        ...


class InMemoryRateRepository(RateRepository):
    """Rates held in a list. ``lookups`` counts ``get_rate`` calls."""

    def __init__(self, rates: Iterable[ExchangeRate] = ()) -> None:
        self._rates: list[ExchangeRate] = []
        self.lookups = 0
        for rate in rates:
            self.add(rate)

    def add(self, rate: ExchangeRate) -> None:
        """Store ``rate``, replacing any rate for the same pair and day."""
        self._rates = [
            r for r in self._rates
            if (r.base_currency, r.target_currency, r.rate_date)
            != (rate.base_currency, rate.target_currency, rate.rate_date)
        ]
        self._rates.append(rate)

    async def get_rate(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        self.lookups += 1
        candidates = [
            r for r in self._rates
            if r.base_currency == base
            and r.target_currency == target
            and (as_of is None or r.rate_date <= as_of)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: (r.rate_date, r.fetched_at))


class SqliteRateRepository(RateRepository):
    """Rates from the ``exchange_rates`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._repo = ExchangeRateRepository(conn)

    async def get_rate(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        return self._repo.get_rate(base, target, as_of)

    def save(self, rate: ExchangeRate) -> int:
        """Upsert and commit one rate. Returns its ``rate_id``."""
        try:
            rate_id = self._repo.upsert(rate)
            self._repo.commit()
        except StorageError:
            self._conn.rollback()
            raise
        logger.info(
            "Exchange rate saved | %s→%s=%s | rate_date=%s | source=%s",
            rate.base_currency, rate.target_currency, rate.rate,
            rate.rate_date, rate.source,
        )
        return rate_id

    def list_rates(self, base: Optional[str] = None) -> list[ExchangeRate]:
        return self._repo.list_rates(base)
