"""SQLite-backed local cache: the durable copy of every dataset."""
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from finance_tracker.core.exceptions import LocalWriteFailure
from .schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


class LocalCache:
    """Key-value store mapping a dataset name to its serialized value.

    Every read decodes a fresh copy, so callers never share state with the
    cache. Writes overwrite the whole dataset.
    """

    def __init__(self, db_path: Path):
        """Open (or create) the cache database.

        Args:
            db_path: Path to the SQLite file
        """
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get(self, name: str) -> Optional[Any]:
        """Return the stored value for a dataset, or None if absent or unreadable."""
        try:
            row = self.conn.execute(
                "SELECT value FROM datasets WHERE name = ?", (name,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read '{name}' from local cache: {e}")
            return None

        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt local cache entry '{name}': {e}")
            return None

    def set(self, name: str, value: Any) -> None:
        """Overwrite a dataset.

        Raises:
            LocalWriteFailure: value is not JSON-serializable or SQLite refused the write
        """
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise LocalWriteFailure(name, str(e)) from e

        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO datasets (name, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(name) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (name, payload),
                )
        except sqlite3.Error as e:
            raise LocalWriteFailure(name, str(e)) from e

    def get_meta(self, key: str) -> Optional[str]:
        try:
            row = self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read meta '{key}' from local cache: {e}")
            return None
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                    (key, value),
                )
        except sqlite3.Error as e:
            raise LocalWriteFailure(f"meta:{key}", str(e)) from e
