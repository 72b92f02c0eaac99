"""
Repository for the ``calculation_events`` audit table.

Rows are append-only: there is no update or delete. ``event_id`` is
AUTOINCREMENT, so ordering by it reproduces emission order.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from portfolio_calc.db.repositories.base import BaseRepository
from portfolio_calc.errors import EventStoreError
from portfolio_calc.models.events import CalculationEvent, StoredEvent, parse_event
from portfolio_calc.utils.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


class CalculationEventRepository(BaseRepository):
    """Read/write access to the ``calculation_events`` table."""

    error_cls = EventStoreError
    read_error_code = "EVENT_STORE_READ_FAILED"
    write_error_code = "EVENT_STORE_WRITE_FAILED"

    def insert(
        self,
        user_id: str,
        event: CalculationEvent,
        created_at: Optional[datetime] = None,
    ) -> StoredEvent:
        """Insert one event. The caller commits.

        Returns:
            The stored record, with its assigned ``event_id``.
        """
        stamp = created_at or utcnow()
        cursor = self.execute(
            """
            INSERT INTO calculation_events (
                correlation_id, user_id, event_type, payload, created_at
            ) VALUES (?, ?, ?, ?, ?);
            """,
            (
                event.correlation_id,
                user_id,
                event.type,
                event.model_dump_json(),
                stamp.isoformat(),
            ),
            write=True,
        )
        return StoredEvent(
            event_id=int(cursor.lastrowid or 0),
            correlation_id=event.correlation_id,
            user_id=user_id,
            event_type=event.type,
            payload=event,
            created_at=stamp,
        )

    def get_by_correlation_id(self, correlation_id: str) -> list[StoredEvent]:
        """All events of one run, oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM calculation_events
            WHERE correlation_id = ?
            ORDER BY event_id ASC;
            """,
            (correlation_id,),
        )
        return [self._row_to_event(r) for r in rows]

    def get_by_user_id(self, user_id: str, limit: int = 100) -> list[StoredEvent]:
        """Most recent events of a user, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM calculation_events
            WHERE user_id = ?
            ORDER BY event_id DESC
            LIMIT ?;
            """,
            (user_id, limit),
        )
        return [self._row_to_event(r) for r in rows]

    def get_by_event_type(
        self, user_id: str, event_type: str, limit: int = 100
    ) -> list[StoredEvent]:
        """Most recent events of one type for a user, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM calculation_events
            WHERE user_id = ? AND event_type = ?
            ORDER BY event_id DESC
            LIMIT ?;
            """,
            (user_id, event_type, limit),
        )
        return [self._row_to_event(r) for r in rows]

    def get_first_of_type(
        self, correlation_id: str, event_type: str
    ) -> Optional[StoredEvent]:
        row = self.fetchone(
            """
            SELECT * FROM calculation_events
            WHERE correlation_id = ? AND event_type = ?
            ORDER BY event_id ASC
            LIMIT 1;
            """,
            (correlation_id, event_type),
        )
        return self._row_to_event(row) if row else None

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM calculation_events;")
        return int(row["n"]) if row else 0

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> StoredEvent:
        return StoredEvent(
            event_id=row["event_id"],
            correlation_id=row["correlation_id"],
            user_id=row["user_id"],
            event_type=row["event_type"],
            payload=parse_event(row["payload"]),
            created_at=parse_iso_datetime(row["created_at"]),
        )
