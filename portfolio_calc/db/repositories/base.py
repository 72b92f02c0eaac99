"""
Base repository providing shared SQLite execution helpers.

Repositories receive a ``sqlite3.Connection`` at construction time; the
caller owns the connection (usually via ``get_connection()``).

  - No ORM: all SQL is explicit and lives in repository methods.
  - Repositories speak pydantic models, not raw dicts.
  - Every ``sqlite3.Error`` is re-raised as the repository's ``error_cls``
    (a ``StorageError``), so callers deal with one error type.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from portfolio_calc.errors import StorageError

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    error_cls: type[StorageError] = StorageError
    read_error_code = "STORAGE_READ_FAILED"
    write_error_code = "STORAGE_WRITE_FAILED"

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = (), *, write: bool = False) -> sqlite3.Cursor:
        """Execute a single SQL statement.

        Args:
            sql: SQL string with ``?`` or ``:name`` placeholders.
            params: Positional tuple or named dict of parameters.
            write: Selects the error code used if the statement fails.

        Raises:
            StorageError: (or ``error_cls``) wrapping the ``sqlite3.Error``.
        """
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise self.error_cls(
                f"SQLite {'write' if write else 'read'} failed: {exc}",
                code=self.write_error_code if write else self.read_error_code,
                details={"sql": sql.strip().split("\n", 1)[0]},
            ) from exc

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def commit(self) -> None:
        try:
            self.conn.commit()
        except sqlite3.Error as exc:
            raise self.error_cls(
                f"SQLite commit failed: {exc}", code=self.write_error_code
            ) from exc
