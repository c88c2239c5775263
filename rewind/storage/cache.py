"""
SQLite-backed cache for billed LLM output.

A summarizer result is stored here before the database write that
completes the item, so a retry after a storage failure reuses the
output instead of paying for a second call.
"""

import hashlib
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator

from rewind.errors import StorageError
from rewind.logging_config import get_logger

logger = get_logger("cache")

SUMMARY_KIND = "summary"


def make_cache_key(item_id: str, content_hash: str, model: str) -> str:
    """Key on the content as well as the item, so edited content is re-summarized."""
    raw = f"{item_id}:{content_hash}:{model}"
    return hashlib.sha256(raw.encode()).hexdigest()


class CacheStore:
    """Keyed JSON blobs with TTL expiration."""

    def __init__(self, db_path: Path, default_ttl_days: int = 7):
        self.db_path = db_path
        self.default_ttl_days = default_ttl_days
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS cache (
                    kind TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    expires_at TEXT NOT NULL,
                    PRIMARY KEY (kind, key)
                );
            """)

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Cache error: {exc}") from exc
        finally:
            conn.close()

    def get(self, kind: str, key: str) -> dict[str, Any] | None:
        """Return the cached value, or None if missing or expired."""
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM cache WHERE kind = ? AND key = ? AND expires_at > ?",
                (kind, key, now),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["value"])

    def set(
        self,
        kind: str,
        key: str,
        value: dict[str, Any],
        ttl_days: int | None = None,
    ) -> None:
        ttl = ttl_days if ttl_days is not None else self.default_ttl_days
        now = datetime.now(timezone.utc)
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO cache (kind, key, value, expires_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(kind, key) DO UPDATE SET
                    value = excluded.value, expires_at = excluded.expires_at
                """,
                (kind, key, json.dumps(value, default=str), (now + timedelta(days=ttl)).isoformat()),
            )
            conn.execute("DELETE FROM cache WHERE expires_at <= ?", (now.isoformat(),))

    def delete(self, kind: str, key: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM cache WHERE kind = ? AND key = ?", (kind, key))
        return cursor.rowcount > 0

    def clear(self, kind: str | None = None) -> int:
        """Delete cached entries. Returns count deleted."""
        with self._connection() as conn:
            if kind:
                cursor = conn.execute("DELETE FROM cache WHERE kind = ?", (kind,))
            else:
                cursor = conn.execute("DELETE FROM cache")
        return cursor.rowcount

    def stats(self) -> dict[str, int]:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM cache").fetchone()[0]
            expired = conn.execute(
                "SELECT COUNT(*) FROM cache WHERE expires_at <= ?", (now,)
            ).fetchone()[0]
        return {"total_entries": total, "expired_entries": expired}
