"""
Shared decimal arithmetic context and helpers.

Every monetary or score computation in the package goes through this module.

Context
-------
``ARITHMETIC_CONTEXT`` is built once at import: 20 significant digits,
ROUND_HALF_UP, with InvalidOperation / DivisionByZero / Overflow trapped.
It is never mutated. Code that computes runs inside ``decimal_context()``,
which yields a *copy* of it as the active thread/task-local context, so no
caller can change precision or rounding for anyone else.

Rounding
--------
Values are carried at full precision and rounded to a fixed number of
fractional digits (4 by default) only when they are formatted for output:

    >>> to_fixed(parse_decimal("100.12345"))
    '100.1235'
"""

from __future__ import annotations

from contextlib import contextmanager
from decimal import (
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    localcontext,
)
from typing import Any, Generator, Optional

DECIMAL_PRECISION = 20
OUTPUT_PLACES = 4

ARITHMETIC_CONTEXT = Context(
    prec=DECIMAL_PRECISION,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

# Quantize needs headroom beyond 20 digits for large integer parts.
_QUANTIZE_CONTEXT = Context(
    prec=DECIMAL_PRECISION + 20,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)


@contextmanager
def decimal_context() -> Generator[Context, None, None]:
    """Run the enclosed block under a private copy of ``ARITHMETIC_CONTEXT``."""
    with localcontext(ARITHMETIC_CONTEXT) as ctx:
        yield ctx


def parse_decimal(value: Any) -> Decimal:
    """Parse ``value`` into a finite ``Decimal``.

    Accepts ``Decimal``, ``int``, ``str`` and ``float`` (floats go through
    ``str()`` so ``0.1`` becomes ``Decimal("0.1")``, not its binary expansion).

    Raises:
        ValueError: If the value is ``None``, empty, bool, non-numeric,
            NaN or infinite.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Cannot parse {value!r} as Decimal.")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("Cannot parse empty string as Decimal.")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError(f"Cannot parse {value!r} as Decimal.") from exc
    if not result.is_finite():
        raise ValueError(f"Decimal value must be finite, got {value!r}.")
    return result


def try_parse_decimal(value: Any) -> Optional[Decimal]:
    """Like ``parse_decimal`` but returns ``None`` instead of raising."""
    try:
        return parse_decimal(value)
    except ValueError:
        return None


def round_fixed(value: Decimal, places: int = OUTPUT_PLACES) -> Decimal:
    """Round to ``places`` fractional digits with ROUND_HALF_UP."""
    exponent = Decimal(1).scaleb(-places)
    return value.quantize(exponent, context=_QUANTIZE_CONTEXT)


def to_fixed(value: Decimal, places: int = OUTPUT_PLACES) -> str:
    """Format as a fixed-point string with exactly ``places`` fractional digits.

    Never produces exponent notation, and never yields ``"-0.0000"``.
    """
    rounded = round_fixed(value, places)
    if rounded.is_zero():
        rounded = abs(rounded)
    return format(rounded, "f")


def to_plain_string(value: Decimal) -> str:
    """Full-precision string without exponent notation, trailing zeros trimmed."""
    if value.is_zero():
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def as_decimal_text(value: Any) -> Any:
    """Turn numeric inputs into decimal strings; leave everything else alone.

    Used by model validators so ``1000``, ``Decimal("0.2")`` and ``0.2`` are
    stored the same way as their string forms. Floats go through ``repr`` to
    keep the shortest round-tripping digits.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    return value


def sum_decimals(values: list[Decimal]) -> Decimal:
    """Sum ``values`` under the shared context. Empty list sums to zero."""
    with decimal_context():
        total = ZERO
        for val in values:
            total += val
        return total
