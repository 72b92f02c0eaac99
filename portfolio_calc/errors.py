"""
Error taxonomy for the calculation engine.

Every error raised across the package boundary carries a stable ``code`` so
an outer API layer can map it to a response status without re-deriving the
error kind from the message.

Error classes
-------------
  PortfolioCalcError         base; ``code``, ``message``, ``details``
  CurrencyConversionError    INVALID_CURRENCY | INVALID_VALUE | RATE_NOT_FOUND
  StorageError               STORAGE_WRITE_FAILED | STORAGE_READ_FAILED
    EventStoreError          EVENT_STORE_WRITE_FAILED | EVENT_STORE_READ_FAILED
  RecommendationError        INVALID_RECOMMENDATION_INPUT

Criterion evaluation never raises; see ``scoring.evaluator``.
"""

from __future__ import annotations

from typing import Any, Optional

# code → default HTTP-ish category used by the API layer
ERROR_CATEGORIES: dict[str, str] = {
    "INVALID_CURRENCY": "validation",
    "INVALID_VALUE": "validation",
    "RATE_NOT_FOUND": "not_found",
    "STORAGE_WRITE_FAILED": "internal",
    "STORAGE_READ_FAILED": "internal",
    "EVENT_STORE_WRITE_FAILED": "internal",
    "EVENT_STORE_READ_FAILED": "internal",
    "INVALID_RECOMMENDATION_INPUT": "validation",
}


class PortfolioCalcError(Exception):
    """Base class for all engine errors.

    Attributes:
        code:    Stable machine-readable error code.
        message: Human-readable description.
        details: Structured context (offending values, identifiers).
    """

    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    @property
    def category(self) -> str:
        """Coarse category (``validation``, ``not_found``, ``internal``)."""
        return ERROR_CATEGORIES.get(self.code, "internal")

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "category": self.category,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class CurrencyConversionError(PortfolioCalcError):
    """Raised when a currency conversion cannot be performed."""

    default_code = "INVALID_VALUE"


class StorageError(PortfolioCalcError):
    """Raised when a SQLite read or write fails."""

    default_code = "STORAGE_WRITE_FAILED"


class EventStoreError(StorageError):
    """Raised by durable event stores when a read or write fails."""

    default_code = "EVENT_STORE_WRITE_FAILED"


class RecommendationError(PortfolioCalcError):
    """Raised for malformed recommendation inputs (e.g. negative contribution)."""

    default_code = "INVALID_RECOMMENDATION_INPUT"
