"""
Currency models: stored exchange rates and conversion results.

Exchange rates are stored as ``base_currency → target_currency`` pairs with
the rate expressed as "1 base = rate target". A rate is fetched from an
external provider once per day and is considered stale when it is strictly
older than the configured threshold (24 h by default).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from portfolio_calc.utils.decimal_utils import as_decimal_text, try_parse_decimal

SUPPORTED_CURRENCIES: tuple[str, ...] = (
    "USD", "EUR", "GBP", "BRL", "CAD", "AUD", "JPY", "CHF",
)


class ExchangeRate(BaseModel):
    """One stored exchange rate.

    Attributes:
        base_currency: Currency the rate converts from.
        target_currency: Currency the rate converts to.
        rate: ``1 base = rate target``, positive decimal string.
        source: Provider name (``"manual"``, ``"ecb"``...).
        fetched_at: When the rate was fetched (UTC).
        rate_date: Calendar day the rate applies to.
    """

    model_config = ConfigDict(frozen=True)

    base_currency: str
    target_currency: str
    rate: str
    source: str = "manual"
    fetched_at: datetime
    rate_date: date

    @field_validator("base_currency", "target_currency")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("rate", mode="before")
    @classmethod
    def coerce_rate(cls, v: Any) -> Any:
        return as_decimal_text(v)

    @field_validator("rate")
    @classmethod
    def validate_rate(cls, v: str) -> str:
        parsed = try_parse_decimal(v)
        if parsed is None or parsed <= 0:
            raise ValueError(f"rate must be a positive decimal, got '{v}'.")
        return v


class CurrencyConversionResult(BaseModel):
    """Outcome of a single conversion.

    Attributes:
        value: Converted amount, fixed-point string with 4 fractional digits.
        rate: Rate actually applied (direct or inverted), full precision.
        is_stale_rate: True when the applied rate was older than the threshold.
    """

    model_config = ConfigDict(frozen=True)

    value: str
    from_currency: str
    to_currency: str
    rate: str
    rate_date: date
    rate_source: str
    is_stale_rate: bool


class ConversionOptions(BaseModel):
    """Optional knobs for a conversion.

    Attributes:
        rate_date: Use the most recent rate on or before this day instead of
            the latest one.
        correlation_id: Attach the conversion audit event to an existing
            calculation; a fresh id is generated when omitted.
        parent_correlation_id: Id of the run that requested the conversion.
            Recorded on the audit event; the event keeps its own correlation id.
    """

    model_config = ConfigDict(frozen=True)

    rate_date: Optional[date] = None
    correlation_id: Optional[str] = None
    parent_correlation_id: Optional[str] = None


class BatchConversionItem(BaseModel):
    """One entry of a batch conversion request."""

    model_config = ConfigDict(frozen=True)

    value: str
    from_currency: str

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        return as_decimal_text(v)
