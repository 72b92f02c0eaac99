"""
Time helpers shared by the converter, the event pipelines and the CLI.

All timestamps handled by the engine are timezone-aware UTC datetimes.
Naive datetimes coming from external collaborators are assumed to be UTC.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_hours(fetched_at: datetime, now: Optional[datetime] = None) -> float:
    """Hours elapsed between ``fetched_at`` and ``now`` (negative if in the future)."""
    reference = ensure_utc(now) if now is not None else utcnow()
    delta = reference - ensure_utc(fetched_at)
    return delta.total_seconds() / 3600.0


def is_older_than(
    fetched_at: datetime,
    threshold: timedelta,
    now: Optional[datetime] = None,
) -> bool:
    """True if strictly more than ``threshold`` has elapsed since ``fetched_at``."""
    reference = ensure_utc(now) if now is not None else utcnow()
    return reference - ensure_utc(fetched_at) > threshold


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime.

    Raises:
        ValueError: If the string is not a valid ISO-8601 datetime.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def parse_iso_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``.

    Raises:
        ValueError: If the string is not a valid ISO date.
    """
    return date.fromisoformat(value.strip())


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds, for measuring run durations."""
    return time.perf_counter() * 1000.0


def elapsed_ms(started_ms: float) -> int:
    """Whole milliseconds elapsed since ``started_ms`` (from ``monotonic_ms``)."""
    return max(0, int(round(monotonic_ms() - started_ms)))
