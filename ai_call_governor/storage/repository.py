"""
Repository pattern for durable key/value storage.

Backs the audit trail with a small SQLite table that behaves like a
browser's local storage: one text value per key, last write wins.
"""

from datetime import datetime, timezone
from typing import Optional

from .db import DEFAULT_DB_PATH, get_connection


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the kv_store table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class StorageRepository:
    """Repository for reading and writing persisted values by key.

    Every operation opens its own connection, so an instance can be shared
    freely. The schema is created lazily on first use.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if not self._schema_ready:
            initialize_schema(self.db_path)
            self._schema_ready = True

    def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None if absent."""
        self._ensure_schema()
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value.

        Args:
            key: Storage key
            value: Serialized value
        """
        self._ensure_schema()
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (key, value, datetime.now(timezone.utc).isoformat()))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def remove_item(self, key: str) -> None:
        """Delete the value stored under key. Missing keys are ignored."""
        self._ensure_schema()
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()
