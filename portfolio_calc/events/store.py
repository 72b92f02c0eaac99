"""
Append-only, correlation-keyed event stores.

``EventStore`` is the contract every calculation pipeline writes to. Events
are never updated or deleted; reading a correlation id returns that run's
events in emission order.

Implementations
---------------
InMemoryEventStore   list-backed, for tests and one-shot CLI runs.
SqliteEventStore     durable, ``calculation_events`` table, one commit per
                     append (one per batch for ``append_batch``).

The SQLite store runs its statements inline on the event loop thread; the
writes are small single-row inserts on a local file.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from portfolio_calc.db.repositories.event_repo import CalculationEventRepository
from portfolio_calc.errors import EventStoreError
from portfolio_calc.models.events import CALC_STARTED, CalculationEvent, StoredEvent
from portfolio_calc.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class EventStore(ABC):
    """Contract for calculation audit storage."""

    @abstractmethod
    async def append(self, user_id: str, event: CalculationEvent) -> StoredEvent:
        """Persist one event. Raises on failure; callers decide whether to propagate."""

    async def append_batch(
        self, user_id: str, events: Sequence[CalculationEvent]
    ) -> list[StoredEvent]:
        """Persist several events in order."""
        stored = []
        for event in events:
            stored.append(await self.append(user_id, event))
        return stored

    @abstractmethod
    async def get_by_correlation_id(self, correlation_id: str) -> list[StoredEvent]:
        """All events of one run, in emission order."""

    @abstractmethod
    async def get_by_user_id(self, user_id: str, limit: int = 100) -> list[StoredEvent]:
        """A user's most recent events, newest first."""

    @abstractmethod
    async def get_by_event_type(
        self, user_id: str, event_type: str, limit: int = 100
    ) -> list[StoredEvent]:
        """A user's most recent events of ``event_type``, newest first."""

    async def get_calc_started_event(self, correlation_id: str) -> Optional[StoredEvent]:
        for stored in await self.get_by_correlation_id(correlation_id):
            if stored.event_type == CALC_STARTED:
                return stored
        return None


class InMemoryEventStore(EventStore):
    """Keeps events in a list. Not shared between instances."""

    def __init__(self) -> None:
        self._events: list[StoredEvent] = []

    @property
    def events(self) -> list[StoredEvent]:
        """Snapshot of every stored event, oldest first."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    async def append(self, user_id: str, event: CalculationEvent) -> StoredEvent:
        stored = StoredEvent(
            event_id=len(self._events) + 1,
            correlation_id=event.correlation_id,
            user_id=user_id,
            event_type=event.type,
            payload=event,
            created_at=utcnow(),
        )
        self._events.append(stored)
        return stored

    async def get_by_correlation_id(self, correlation_id: str) -> list[StoredEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_by_user_id(self, user_id: str, limit: int = 100) -> list[StoredEvent]:
        matches = [e for e in reversed(self._events) if e.user_id == user_id]
        return matches[:limit]

    async def get_by_event_type(
        self, user_id: str, event_type: str, limit: int = 100
    ) -> list[StoredEvent]:
        matches = [
            e for e in reversed(self._events)
            if e.user_id == user_id and e.event_type == event_type
        ]
        return matches[:limit]


class SqliteEventStore(EventStore):
    """Durable store over an open connection with the schema applied.

    Args:
        conn: Connection owned by the caller (see ``get_connection``).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._repo = CalculationEventRepository(conn)

    async def append(self, user_id: str, event: CalculationEvent) -> StoredEvent:
        try:
            stored = self._repo.insert(user_id, event)
            self._repo.commit()
        except EventStoreError:
            self._conn.rollback()
            logger.error(
                "Event append failed | type=%s | correlation_id=%s",
                event.type, event.correlation_id,
            )
            raise
        logger.debug(
            "Event appended | type=%s | event_id=%d | correlation_id=%s",
            stored.event_type, stored.event_id, stored.correlation_id,
        )
        return stored

    async def append_batch(
        self, user_id: str, events: Sequence[CalculationEvent]
    ) -> list[StoredEvent]:
        """Insert all events in one transaction: all are stored or none."""
        try:
            stored = [self._repo.insert(user_id, event) for event in events]
            self._repo.commit()
        except EventStoreError:
            self._conn.rollback()
            raise
        return stored

    async def get_by_correlation_id(self, correlation_id: str) -> list[StoredEvent]:
        return self._repo.get_by_correlation_id(correlation_id)

    async def get_by_user_id(self, user_id: str, limit: int = 100) -> list[StoredEvent]:
        return self._repo.get_by_user_id(user_id, limit)

    async def get_by_event_type(
        self, user_id: str, event_type: str, limit: int = 100
    ) -> list[StoredEvent]:
        return self._repo.get_by_event_type(user_id, event_type, limit)

    async def get_calc_started_event(self, correlation_id: str) -> Optional[StoredEvent]:
        return self._repo.get_first_of_type(correlation_id, CALC_STARTED)
