"""SQLite storage adapter.

Implements the core LedgerStoragePort using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

from core.errors import DuplicateRecordError, LedgerUnavailableError


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the LedgerStoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - processed_messages: dedup ledger keyed by (message_id, source_channel_id)
        """

        with self._connect() as conn:
            # processed_messages records every message admitted into the pipeline.
            # Fields:
            # - message_id: message id within its source channel
            # - source_channel_id: normalized channel id (marked -100 form)
            # - processed_at: UTC timestamp used for TTL cleanup
            # The composite primary key is what rejects duplicate inserts.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_messages (
                    message_id INTEGER NOT NULL,
                    source_channel_id TEXT NOT NULL,
                    processed_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (message_id, source_channel_id)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_processed_messages_processed_at
                ON processed_messages (processed_at)
                """
            )

    def exists_processed(self, message_id: int, source_channel_id: str) -> bool:
        """Check if the pair has already been recorded."""

        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT 1 FROM processed_messages
                    WHERE message_id = ? AND source_channel_id = ?
                    """,
                    (message_id, source_channel_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise LedgerUnavailableError(str(exc)) from exc
        return row is not None

    def insert_processed(self, message_id: int, source_channel_id: str) -> None:
        """Insert the pair, raising DuplicateRecordError if it exists."""

        now = datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO processed_messages (message_id, source_channel_id, processed_at)
                    VALUES (?, ?, ?)
                    """,
                    (message_id, source_channel_id, now.isoformat()),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(f"{source_channel_id}/{message_id}") from exc
        except sqlite3.Error as exc:
            raise LedgerUnavailableError(str(exc)) from exc

    def cleanup_processed(self, ttl_days: int) -> int:
        """Delete ledger records older than ``ttl_days`` and return the number removed."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM processed_messages WHERE processed_at < ?",
                (cutoff.isoformat(),),
            )
            return cur.rowcount

