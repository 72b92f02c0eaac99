"""
Currency conversion over stored exchange rates.

Modules
-------
rates     : RateRepository contract, InMemoryRateRepository,
            SqliteRateRepository.
converter : CurrencyConverter — single and batch conversion, inverse-rate
            fallback, stale-rate detection, best-effort audit events.
"""

from portfolio_calc.currency.converter import CurrencyConverter
from portfolio_calc.currency.rates import (
    InMemoryRateRepository,
    RateRepository,
    SqliteRateRepository,
)

__all__ = [
    "CurrencyConverter",
    "InMemoryRateRepository",
    "RateRepository",
    "SqliteRateRepository",
]
