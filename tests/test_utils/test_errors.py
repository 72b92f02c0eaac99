"""Tests for portfolio_calc/errors.py."""

from __future__ import annotations

from portfolio_calc.errors import (
    CurrencyConversionError,
    EventStoreError,
    PortfolioCalcError,
    RecommendationError,
    StorageError,
)


class TestErrorCodes:
    def test_default_codes(self):
        assert CurrencyConversionError("x").code == "INVALID_VALUE"
        assert StorageError("x").code == "STORAGE_WRITE_FAILED"
        assert EventStoreError("x").code == "EVENT_STORE_WRITE_FAILED"
        assert RecommendationError("x").code == "INVALID_RECOMMENDATION_INPUT"

    def test_explicit_code_and_category(self):
        exc = CurrencyConversionError("missing", code="RATE_NOT_FOUND")
        assert exc.code == "RATE_NOT_FOUND"
        assert exc.category == "not_found"

    def test_unknown_code_is_internal(self):
        assert PortfolioCalcError("boom", code="SOMETHING_ELSE").category == "internal"

    def test_hierarchy(self):
        assert issubclass(EventStoreError, StorageError)
        assert issubclass(StorageError, PortfolioCalcError)

    def test_to_dict(self):
        exc = CurrencyConversionError(
            "Invalid from_currency: XYZ", code="INVALID_CURRENCY", details={"currency": "XYZ"}
        )
        assert exc.to_dict() == {
            "code": "INVALID_CURRENCY",
            "message": "Invalid from_currency: XYZ",
            "category": "validation",
            "details": {"currency": "XYZ"},
        }
        assert str(exc) == "Invalid from_currency: XYZ"
