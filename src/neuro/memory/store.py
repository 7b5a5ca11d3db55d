"""SQLite storage for conversation history and long-term memory."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageError
from .models import Citation, GroupedMemory, MemoryKind, Message, Role, SummaryRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    subject     TEXT NOT NULL,
    role        TEXT NOT NULL,
    content     TEXT NOT NULL,
    timestamp   INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_history_subject_ts ON chat_history(subject, timestamp, id);

CREATE TABLE IF NOT EXISTS user_settings (
    subject     TEXT PRIMARY KEY,
    insights    TEXT NOT NULL DEFAULT '',
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS long_term_memory (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    subject     TEXT NOT NULL,
    kind        TEXT NOT NULL,
    content     TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_memory_subject ON long_term_memory(subject, kind);

CREATE TABLE IF NOT EXISTS chat_summaries (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    subject             TEXT NOT NULL,
    summary             TEXT NOT NULL,
    messages_compressed INTEGER NOT NULL,
    created_at          TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_summaries_subject ON chat_summaries(subject);

CREATE TABLE IF NOT EXISTS last_sources (
    subject     TEXT PRIMARY KEY,
    sources     TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


class ConversationStore:
    """Per-subject message log, settings, memory items and summaries.

    Every public operation is keyed by a subject identity. Failures of the
    underlying database are raised as :class:`StorageError` carrying the
    operation name; nothing here retries.
    """

    def __init__(self, db_path: Path, max_history_messages: int = 10_000) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            max_history_messages: Soft cap on messages returned by
                :meth:`list_messages`. Older messages beyond the cap are
                silently left out.
        """
        self.db_path = db_path
        self.max_history_messages = max_history_messages
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, timeout=30)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @contextmanager
    def _operation(self, name: str) -> Iterator[sqlite3.Connection]:
        """Run a store operation, translating database errors."""
        try:
            conn = self._get_connection()
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            if self._conn is not None:
                self._conn.rollback()
            raise StorageError(name, str(e)) from e

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        with self._operation("init_db") as conn:
            conn.executescript(SCHEMA)

    # Messages

    def append_message(self, subject: str, message: Message) -> Message:
        """Append a message to the subject's log.

        Ordering is not enforced; callers supply non-decreasing timestamps.

        Returns:
            The message with its assigned id.
        """
        with self._operation("append_message") as conn:
            cursor = conn.execute(
                "INSERT INTO chat_history (subject, role, content, timestamp) VALUES (?, ?, ?, ?)",
                (str(subject), message.role.value, message.content, message.timestamp),
            )
            row_id = cursor.lastrowid
        return Message(
            role=message.role,
            content=message.content,
            timestamp=message.timestamp,
            id=row_id,
        )

    def list_messages(self, subject: str, limit: int | None = None) -> list[Message]:
        """List the most recent messages in ascending order.

        Args:
            subject: The conversation owner.
            limit: Maximum number of messages; defaults to the store cap.

        Returns:
            Messages ordered by (timestamp, id).
        """
        limit = self.max_history_messages if limit is None else limit
        if limit <= 0:
            return []

        with self._operation("list_messages") as conn:
            rows = conn.execute(
                """
                SELECT id, role, content, timestamp FROM chat_history
                WHERE subject = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (str(subject), limit),
            ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    def count_messages(self, subject: str) -> int:
        """Count every stored message of the subject, ignoring the cap."""
        with self._operation("count_messages") as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM chat_history WHERE subject = ?",
                (str(subject),),
            ).fetchone()
        return int(row["n"])

    def delete_messages_before(self, subject: str, cutoff_timestamp: int) -> int:
        """Delete messages with a timestamp strictly before the cutoff.

        Returns:
            Number of messages deleted.
        """
        with self._operation("delete_messages_before") as conn:
            cursor = conn.execute(
                "DELETE FROM chat_history WHERE subject = ? AND timestamp < ?",
                (str(subject), cutoff_timestamp),
            )
        return cursor.rowcount

    def delete_messages_through(self, subject: str, last: Message) -> int:
        """Delete the prefix of the log ending at ``last`` (inclusive).

        Position is decided by (timestamp, id), so messages sharing the
        boundary timestamp but stored later are kept. Repeating the call
        against an already-shrunk log deletes nothing.

        Returns:
            Number of messages deleted.
        """
        if last.id is None:
            raise ValueError("delete_messages_through requires a stored message")

        with self._operation("delete_messages_through") as conn:
            cursor = conn.execute(
                """
                DELETE FROM chat_history
                WHERE subject = ?
                  AND (timestamp < ? OR (timestamp = ? AND id <= ?))
                """,
                (str(subject), last.timestamp, last.timestamp, last.id),
            )
        return cursor.rowcount

    def clear_messages(self, subject: str) -> int:
        """Delete every message of the subject."""
        with self._operation("clear_messages") as conn:
            cursor = conn.execute(
                "DELETE FROM chat_history WHERE subject = ?", (str(subject),)
            )
        return cursor.rowcount

    # Settings

    def upsert_settings(self, subject: str, insights: str) -> None:
        """Create or replace the subject's free-text insights."""
        with self._operation("upsert_settings") as conn:
            conn.execute(
                """
                INSERT INTO user_settings (subject, insights)
                VALUES (?, ?)
                ON CONFLICT(subject) DO UPDATE SET
                    insights = excluded.insights,
                    updated_at = datetime('now')
                """,
                (str(subject), insights),
            )

    def get_settings(self, subject: str) -> str:
        """Return the subject's insights, or an empty string."""
        with self._operation("get_settings") as conn:
            row = conn.execute(
                "SELECT insights FROM user_settings WHERE subject = ?", (str(subject),)
            ).fetchone()
        return row["insights"] if row else ""

    # Long-term memory

    def add_memory_item(self, subject: str, kind: MemoryKind, text: str) -> bool:
        """Store a memory item unless an identical one already exists.

        The duplicate check and the insert are separate statements; two
        concurrent writers may both insert.

        Returns:
            True if the item was inserted, False if it already existed.
        """
        with self._operation("add_memory_item") as conn:
            existing = conn.execute(
                """
                SELECT 1 FROM long_term_memory
                WHERE subject = ? AND kind = ? AND content = ?
                LIMIT 1
                """,
                (str(subject), kind.value, text),
            ).fetchone()
            if existing is not None:
                return False

            conn.execute(
                "INSERT INTO long_term_memory (subject, kind, content) VALUES (?, ?, ?)",
                (str(subject), kind.value, text),
            )
        return True

    def list_memory_items(self, subject: str) -> GroupedMemory:
        """Return the subject's memory items grouped by kind."""
        with self._operation("list_memory_items") as conn:
            rows = conn.execute(
                "SELECT kind, content FROM long_term_memory WHERE subject = ? ORDER BY id",
                (str(subject),),
            ).fetchall()

        memory = GroupedMemory()
        for row in rows:
            try:
                kind = MemoryKind(row["kind"])
            except ValueError:
                continue
            memory.add(kind, row["content"])
        return memory

    def clear_memory_items(self, subject: str) -> int:
        """Delete every memory item of the subject."""
        with self._operation("clear_memory_items") as conn:
            cursor = conn.execute(
                "DELETE FROM long_term_memory WHERE subject = ?", (str(subject),)
            )
        return cursor.rowcount

    # Summaries

    def append_summary_record(self, record: SummaryRecord) -> None:
        """Append a compression event to the summary log."""
        with self._operation("append_summary_record") as conn:
            conn.execute(
                """
                INSERT INTO chat_summaries (subject, summary, messages_compressed)
                VALUES (?, ?, ?)
                """,
                (str(record.subject), record.summary, record.messages_compressed),
            )

    def list_summaries(self, subject: str) -> list[SummaryRecord]:
        """Return the subject's summary records, oldest first."""
        with self._operation("list_summaries") as conn:
            rows = conn.execute(
                """
                SELECT subject, summary, messages_compressed, created_at
                FROM chat_summaries WHERE subject = ? ORDER BY id
                """,
                (str(subject),),
            ).fetchall()
        return [
            SummaryRecord(
                subject=row["subject"],
                summary=row["summary"],
                messages_compressed=row["messages_compressed"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def clear_summaries(self, subject: str) -> int:
        """Delete every summary record of the subject."""
        with self._operation("clear_summaries") as conn:
            cursor = conn.execute(
                "DELETE FROM chat_summaries WHERE subject = ?", (str(subject),)
            )
        return cursor.rowcount

    # Sources of the last reply

    def save_last_sources(self, subject: str, sources: list[Citation]) -> None:
        """Replace the citations attached to the subject's latest reply."""
        payload = json.dumps(
            [{"title": s.title, "url": s.url} for s in sources], ensure_ascii=False
        )
        with self._operation("save_last_sources") as conn:
            conn.execute(
                """
                INSERT INTO last_sources (subject, sources)
                VALUES (?, ?)
                ON CONFLICT(subject) DO UPDATE SET
                    sources = excluded.sources,
                    updated_at = datetime('now')
                """,
                (str(subject), payload),
            )

    def get_last_sources(self, subject: str) -> list[Citation]:
        """Return the citations of the subject's latest reply."""
        with self._operation("get_last_sources") as conn:
            row = conn.execute(
                "SELECT sources FROM last_sources WHERE subject = ?", (str(subject),)
            ).fetchone()
        if row is None:
            return []

        try:
            data = json.loads(row["sources"])
        except json.JSONDecodeError:
            return []
        return [
            Citation(title=str(item.get("title", "")), url=str(item["url"]))
            for item in data
            if isinstance(item, dict) and item.get("url")
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        """Convert a database row to a Message."""
        return Message(
            role=Role(row["role"]),
            content=row["content"],
            timestamp=row["timestamp"],
            id=row["id"],
        )
