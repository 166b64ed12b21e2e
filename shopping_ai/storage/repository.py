"""
Repository pattern for data access.

A small key-value store over SQLite. Values are JSON documents, so a key
can hold a scalar, a struct or an ordered list.
"""

import json
import sqlite3
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from .db import DEFAULT_DB_PATH, get_connection


def _select(conn: sqlite3.Connection, keys: List[str]) -> Dict[str, Any]:
    if not keys:
        return {}
    placeholders = ", ".join("?" for _ in keys)
    cursor = conn.execute(f"SELECT key, value FROM kv_store WHERE key IN ({placeholders})", keys)
    return {key: json.loads(value) for key, value in cursor.fetchall()}


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
                value TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class KeyValueStore:
    """Persistent key-value storage.

    All writes go through one lock so that concurrent writers in the same
    process never race on the database file. ``write_many`` commits a group
    of keys in a single transaction: either every key is written or none is.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store and make sure its table exists.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        initialize_schema(db_path)

    def get(self, key: str, default: Any = None) -> Any:
        """Load a value.

        Args:
            key: Storage key
            default: Returned when the key is absent

        Returns:
            The decoded JSON value, or default
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return default
        return json.loads(row[0])

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Load several values in one read; absent keys are omitted."""
        conn = get_connection(self.db_path)
        try:
            return _select(conn, list(keys))
        finally:
            conn.close()

    def set(self, key: str, value: Any) -> None:
        self.write_many({key: value})

    def write_many(self, values: Dict[str, Any], delete: Optional[Iterable[str]] = None) -> None:
        """Write and delete keys atomically.

        Args:
            values: Keys to insert or replace
            delete: Keys to remove in the same transaction

        Raises:
            TypeError: If a value is not JSON serializable
            sqlite3.Error: Database errors, after rolling back
        """
        encoded = [(key, json.dumps(value)) for key, value in values.items()]
        removed = list(delete or [])

        with self._lock:
            conn = get_connection(self.db_path)
            try:
                conn.execute("BEGIN TRANSACTION")
                conn.executemany(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)", encoded
                )
                if removed:
                    conn.executemany("DELETE FROM kv_store WHERE key = ?", [(key,) for key in removed])
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def delete(self, *keys: str) -> None:
        self.write_many({}, delete=keys)

    def update(
        self,
        keys: Iterable[str],
        transform: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Read, transform and write keys in one transaction.

        The database write lock is taken before the read, so a concurrent
        writer in another process waits instead of overwriting the result.

        Args:
            keys: Keys to read; absent keys are omitted from the mapping
            transform: Maps the current values to the values to write

        Returns:
            The values that were written

        Raises:
            sqlite3.Error: Database errors, after rolling back
        """
        keys = list(keys)
        with self._lock:
            conn = get_connection(self.db_path)
            try:
                conn.execute("BEGIN IMMEDIATE")
                values = transform(_select(conn, keys))
                encoded = [(key, json.dumps(value)) for key, value in values.items()]
                conn.executemany(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)", encoded
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        return values
