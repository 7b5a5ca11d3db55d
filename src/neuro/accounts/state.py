"""Shared key/value state backed by SQLite.

Independent processes pointing at the same database file see each other's
writes immediately. Read-modify-write sequences run inside
:meth:`StateStore.transaction`, which takes SQLite's write lock up front
(``BEGIN IMMEDIATE``) so concurrent callers serialize instead of racing.
"""

import json
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..clock import now_ms
from ..errors import StorageError


class StateStore:
    """JSON values by key, with optional expiry."""

    def __init__(self, db_path: Path, clock: Callable[[], int] = now_ms) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            clock: Returns the current time in milliseconds.
        """
        self.db_path = db_path
        self.clock = clock
        self._conn: sqlite3.Connection | None = None
        self._depth = 0

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection (autocommit mode)."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        return self._conn

    def init_db(self) -> None:
        """Create the state table if it doesn't exist."""
        try:
            self._get_connection().execute(
                """
                CREATE TABLE IF NOT EXISTS state (
                    key         TEXT PRIMARY KEY,
                    value       TEXT NOT NULL,
                    expires_at  INTEGER
                )
                """
            )
        except sqlite3.Error as e:
            raise StorageError("state.init_db", str(e)) from e

    @contextmanager
    def transaction(self) -> Iterator["StateStore"]:
        """Hold the database write lock for a read-modify-write sequence.

        Nested calls join the outer transaction.
        """
        conn = self._get_connection()
        if self._depth == 0:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError("state.transaction", str(e)) from e

        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                conn.execute("ROLLBACK")
            raise
        self._depth -= 1
        if self._depth == 0:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StorageError("state.transaction", str(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under ``key``, or ``default``.

        Expired entries read as missing.
        """
        try:
            row = self._get_connection().execute(
                "SELECT value, expires_at FROM state WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError("state.get", str(e)) from e

        if row is None:
            return default
        value, expires_at = row
        if expires_at is not None and expires_at <= self.clock():
            return default
        return json.loads(value)

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Store ``value`` under ``key``, optionally expiring after ``ttl_ms``."""
        expires_at = self.clock() + ttl_ms if ttl_ms is not None else None
        try:
            self._get_connection().execute(
                """
                INSERT INTO state (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, json.dumps(value), expires_at),
            )
        except sqlite3.Error as e:
            raise StorageError("state.set", str(e)) from e

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        try:
            self._get_connection().execute("DELETE FROM state WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError("state.delete", str(e)) from e

    def purge_expired(self) -> int:
        """Delete expired entries. Returns how many were removed."""
        try:
            cursor = self._get_connection().execute(
                "DELETE FROM state WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self.clock(),),
            )
        except sqlite3.Error as e:
            raise StorageError("state.purge_expired", str(e)) from e
        return cursor.rowcount

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
