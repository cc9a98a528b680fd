"""SQLite key/value backing store shared by every persisted container.

Each key holds one JSON text blob. Keys are independent: there are no
cross-key transactions, and a read-modify-write on one key never touches
another.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

logger = logging.getLogger("stemmy.store")

KEY_PREFIX = "stemmy-"


def storage_key(purpose: str) -> str:
    """Namespace a purpose suffix, e.g. 'daily' -> 'stemmy-daily'."""
    return f"{KEY_PREFIX}{purpose}"


def init_database(db_path: Path | str) -> sqlite3.Connection:
    """Open (creating if needed) the store database and return the connection."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # Request handlers and scheduler jobs share one connection
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    cursor = conn.cursor()

    # WAL lets the CLI read while the server writes
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.commit()
    return conn


class KeyValueStore:
    """Thin synchronous wrapper over the ``kv_store`` table."""

    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        self._conn = init_database(db_path)

    def get(self, key: str) -> str | None:
        """Return the stored text for ``key``, or None when absent or unreadable."""
        try:
            row = self._conn.execute(
                "SELECT payload FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Store read failed for %s: %s", key, e)
            return None
        return row[0] if row else None

    def put(self, key: str, payload: str) -> None:
        self._conn.execute(
            """
            INSERT INTO kv_store (key, payload, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (key, payload, datetime.now().isoformat()),
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
