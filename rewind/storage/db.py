"""
SQLite database operations for sources, items and summaries.

Design decisions:
- Single file database, WAL mode for concurrent reads
- Every cross-run lock is a conditional UPDATE (compare-and-swap on a
  status or owner column), so it holds across processes
- Summary uniqueness is checked inside the same write transaction as the
  insert; the summaries table has no UNIQUE constraint of its own
"""

import json
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator
from uuid import uuid4

from dateutil.parser import parse as parse_date

from rewind.errors import ConflictError, StorageError
from rewind.models import (
    ContentItem,
    ContentSource,
    ContentType,
    ProcessingStatus,
    SourceKind,
    Summary,
)

SQLITE_MAX_VARIABLES = 500

# Columns an update may overwrite. Status, retry bookkeeping and identity
# are owned by the summarization state machine.
MUTABLE_ITEM_COLUMNS = (
    "content_type",
    "title",
    "url",
    "author",
    "image_url",
    "published_at",
    "raw_content",
    "extracted_text",
    "transcript",
    "content_hash",
    "word_count",
    "duration_seconds",
    "audio_url",
    "categories",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dt(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = parse_date(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _chunks(values: list[str], size: int = SQLITE_MAX_VARIABLES) -> Iterable[list[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class Database:
    """SQLite database wrapper for pipeline state."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS content_sources (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL DEFAULT 'rss',
                    title TEXT NOT NULL,
                    feed_url TEXT UNIQUE,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    auto_summarize INTEGER NOT NULL DEFAULT 1,
                    last_fetched_at TEXT,
                    last_successful_fetch_at TEXT,
                    last_published_at TEXT,
                    fetch_error_count INTEGER NOT NULL DEFAULT 0,
                    last_error_message TEXT,
                    sync_lock_owner TEXT,
                    sync_locked_at TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS content_items (
                    id TEXT PRIMARY KEY,
                    source_id TEXT NOT NULL REFERENCES content_sources(id) ON DELETE CASCADE,
                    natural_key TEXT NOT NULL,
                    content_type TEXT NOT NULL DEFAULT 'article',
                    title TEXT NOT NULL,
                    url TEXT,
                    author TEXT,
                    image_url TEXT,
                    published_at TEXT,
                    raw_content TEXT DEFAULT '',
                    extracted_text TEXT DEFAULT '',
                    transcript TEXT,
                    content_hash TEXT DEFAULT '',
                    word_count INTEGER DEFAULT 0,
                    duration_seconds INTEGER,
                    audio_url TEXT,
                    categories TEXT DEFAULT '[]',  -- JSON array
                    processing_status TEXT NOT NULL DEFAULT 'pending',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    last_retry_at TEXT,
                    processing_started_at TEXT,
                    attempt_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (source_id, natural_key)
                );

                CREATE INDEX IF NOT EXISTS idx_items_status
                    ON content_items(processing_status);
                CREATE INDEX IF NOT EXISTS idx_items_published
                    ON content_items(published_at DESC);

                CREATE TABLE IF NOT EXISTS summaries (
                    id TEXT PRIMARY KEY,
                    content_id TEXT NOT NULL REFERENCES content_items(id) ON DELETE CASCADE,
                    headline TEXT,
                    tldr TEXT,
                    full_summary TEXT,
                    key_points TEXT,      -- JSON
                    key_takeaways TEXT,   -- JSON
                    related_ideas TEXT,   -- JSON
                    allied_trivia TEXT,   -- JSON
                    speakers TEXT,        -- JSON
                    model_used TEXT,
                    input_tokens INTEGER DEFAULT 0,
                    output_tokens INTEGER DEFAULT 0,
                    cost_usd REAL DEFAULT 0,
                    processing_time_ms INTEGER DEFAULT 0,
                    quality_score INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_summaries_content
                    ON summaries(content_id);

                CREATE TABLE IF NOT EXISTS sync_state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                );
            """)

    @contextmanager
    def _connection(self, immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections.

        `immediate` takes the write lock up front so a read-then-write
        sequence runs as one atomic unit.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Database error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Sources

    def register_source(
        self,
        title: str,
        feed_url: str,
        kind: SourceKind = SourceKind.RSS,
        auto_summarize: bool = True,
    ) -> tuple[ContentSource, bool]:
        """Create a source, or return the existing one for this feed URL.

        Returns (source, created).
        """
        with self._connection(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM content_sources WHERE feed_url = ?", (feed_url,)
            ).fetchone()
            if row is not None:
                return self._row_to_source(row), False

            source_id = uuid4().hex
            conn.execute(
                """
                INSERT INTO content_sources (id, kind, title, feed_url, auto_summarize, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (source_id, kind.value, title, feed_url, int(auto_summarize), _iso(utcnow())),
            )
            row = conn.execute(
                "SELECT * FROM content_sources WHERE id = ?", (source_id,)
            ).fetchone()
        return self._row_to_source(row), True

    def get_source(self, source_id: str) -> ContentSource | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM content_sources WHERE id = ?", (source_id,)
            ).fetchone()
        return self._row_to_source(row) if row else None

    def list_sources(self, active_only: bool = True) -> list[ContentSource]:
        """List sources, least recently fetched first."""
        query = "SELECT * FROM content_sources"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC"
        with self._connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_source(row) for row in rows]

    def set_source_active(self, source_id: str, active: bool) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE content_sources SET is_active = ? WHERE id = ?",
                (int(active), source_id),
            )
        return cursor.rowcount > 0

    def list_pause_candidates(self, threshold: int) -> list[ContentSource]:
        """Sources whose consecutive error count reached `threshold`."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM content_sources
                WHERE is_active = 1 AND fetch_error_count >= ?
                ORDER BY fetch_error_count DESC
                """,
                (threshold,),
            ).fetchall()
        return [self._row_to_source(row) for row in rows]

    def acquire_source_lock(
        self,
        source_id: str,
        owner: str,
        ttl_seconds: int,
        now: datetime | None = None,
    ) -> bool:
        """Take the per-source sync lease if free or expired."""
        now = now or utcnow()
        expired_before = now.timestamp() - ttl_seconds
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE content_sources
                SET sync_lock_owner = ?, sync_locked_at = ?
                WHERE id = ?
                  AND (sync_lock_owner IS NULL OR sync_locked_at IS NULL OR sync_locked_at < ?)
                """,
                (
                    owner,
                    _iso(now),
                    source_id,
                    _iso(datetime.fromtimestamp(expired_before, tz=timezone.utc)),
                ),
            )
        return cursor.rowcount == 1

    def release_source_lock(self, source_id: str, owner: str) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE content_sources
                SET sync_lock_owner = NULL, sync_locked_at = NULL
                WHERE id = ? AND sync_lock_owner = ?
                """,
                (source_id, owner),
            )

    def record_fetch_success(self, source_id: str, checkpoint: datetime | None) -> None:
        """Reset the error count and advance the checkpoint (never backwards)."""
        now = _iso(utcnow())
        checkpoint_iso = _iso(checkpoint)
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE content_sources SET
                    last_fetched_at = ?,
                    last_successful_fetch_at = ?,
                    fetch_error_count = 0,
                    last_error_message = NULL,
                    last_published_at = CASE
                        WHEN ? IS NOT NULL
                             AND (last_published_at IS NULL OR ? > last_published_at)
                        THEN ?
                        ELSE last_published_at
                    END
                WHERE id = ?
                """,
                (now, now, checkpoint_iso, checkpoint_iso, checkpoint_iso, source_id),
            )

    def record_fetch_failure(self, source_id: str, error: str) -> None:
        """Count a failed fetch. The checkpoint is left untouched."""
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE content_sources SET
                    last_fetched_at = ?,
                    last_error_message = ?,
                    fetch_error_count = fetch_error_count + 1
                WHERE id = ?
                """,
                (_iso(utcnow()), error, source_id),
            )

    # ------------------------------------------------------------------
    # Items

    def get_items_by_natural_keys(
        self, source_id: str, natural_keys: Iterable[str]
    ) -> dict[str, ContentItem]:
        keys = sorted(set(natural_keys))
        found: dict[str, ContentItem] = {}
        if not keys:
            return found
        with self._connection() as conn:
            for chunk in _chunks(keys):
                rows = conn.execute(
                    f"""
                    SELECT * FROM content_items
                    WHERE source_id = ? AND natural_key IN ({_placeholders(len(chunk))})
                    """,
                    (source_id, *chunk),
                ).fetchall()
                for row in rows:
                    found[row["natural_key"]] = self._row_to_item(row)
        return found

    def upsert_items(self, items: list[ContentItem]) -> dict[str, str]:
        """
        Insert or update items keyed by (source_id, natural_key).

        Runs as one transaction. On conflict only the mutable columns are
        overwritten. Returns natural_key -> persisted item id.
        """
        if not items:
            return {}

        now = _iso(utcnow())
        columns = ("id", "source_id", "natural_key", *MUTABLE_ITEM_COLUMNS,
                   "processing_status", "retry_count", "created_at", "updated_at")
        updates = ", ".join(f"{col} = excluded.{col}" for col in MUTABLE_ITEM_COLUMNS)
        statement = f"""
            INSERT INTO content_items ({", ".join(columns)})
            VALUES ({_placeholders(len(columns))})
            ON CONFLICT(source_id, natural_key) DO UPDATE SET
                {updates},
                updated_at = excluded.updated_at
        """

        ids: dict[str, str] = {}
        with self._connection(immediate=True) as conn:
            for item in items:
                conn.execute(statement, (
                    item.id,
                    item.source_id,
                    item.natural_key,
                    item.content_type.value,
                    item.title,
                    item.url,
                    item.author,
                    item.image_url,
                    _iso(item.published_at),
                    item.raw_content,
                    item.extracted_text,
                    item.transcript,
                    item.content_hash,
                    item.word_count,
                    item.duration_seconds,
                    item.audio_url,
                    json.dumps(item.categories),
                    item.processing_status.value,
                    item.retry_count,
                    now,
                    now,
                ))

            by_source: dict[str, list[str]] = {}
            for item in items:
                by_source.setdefault(item.source_id, []).append(item.natural_key)
            for source_id, keys in by_source.items():
                for chunk in _chunks(sorted(set(keys))):
                    rows = conn.execute(
                        f"""
                        SELECT id, natural_key FROM content_items
                        WHERE source_id = ? AND natural_key IN ({_placeholders(len(chunk))})
                        """,
                        (source_id, *chunk),
                    ).fetchall()
                    ids.update({row["natural_key"]: row["id"] for row in rows})
        return ids

    def get_item(self, item_id: str) -> ContentItem | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM content_items WHERE id = ?", (item_id,)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def count_items(self, source_id: str | None = None) -> int:
        with self._connection() as conn:
            if source_id:
                return conn.execute(
                    "SELECT COUNT(*) FROM content_items WHERE source_id = ?", (source_id,)
                ).fetchone()[0]
            return conn.execute("SELECT COUNT(*) FROM content_items").fetchone()[0]

    def attach_transcript(self, item_id: str, transcript: str, content_hash: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE content_items
                SET transcript = ?, content_hash = ?, updated_at = ?
                WHERE id = ?
                """,
                (transcript, content_hash, _iso(utcnow()), item_id),
            )
        return cursor.rowcount > 0

    def claim_item(
        self,
        item_id: str,
        from_statuses: Iterable[ProcessingStatus],
        attempt_id: str,
        max_retry_count: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Compare-and-swap an item into `processing`.

        Succeeds only when the current status is one of `from_statuses`
        (and, when given, retry_count is below `max_retry_count`). The
        attempt id becomes the in-flight marker.
        """
        statuses = [status.value for status in from_statuses]
        query = f"""
            UPDATE content_items SET
                processing_status = 'processing',
                attempt_id = ?,
                processing_started_at = ?,
                updated_at = ?
            WHERE id = ? AND processing_status IN ({_placeholders(len(statuses))})
        """
        params: list = [attempt_id, _iso(now or utcnow()), _iso(utcnow()), item_id, *statuses]
        if max_retry_count is not None:
            query += " AND retry_count < ?"
            params.append(max_retry_count)
        with self._connection() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount == 1

    def claim_for_retry(
        self, item_id: str, from_statuses: Iterable[ProcessingStatus], attempt_id: str
    ) -> bool:
        """
        Manual retry entry: CAS to `retrying` with the retry count reset,
        then `retrying -> processing`, in one transaction.

        Either both steps land or neither does, so a storage failure never
        leaves the item parked in `retrying`.
        """
        statuses = [status.value for status in from_statuses]
        now = _iso(utcnow())
        with self._connection(immediate=True) as conn:
            cursor = conn.execute(
                f"""
                UPDATE content_items SET
                    processing_status = 'retrying',
                    retry_count = 0,
                    last_error = NULL,
                    updated_at = ?
                WHERE id = ? AND processing_status IN ({_placeholders(len(statuses))})
                """,
                (now, item_id, *statuses),
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(
                """
                UPDATE content_items SET
                    processing_status = 'processing',
                    attempt_id = ?,
                    processing_started_at = ?,
                    updated_at = ?
                WHERE id = ? AND processing_status = 'retrying'
                """,
                (attempt_id, now, now, item_id),
            )
        return True

    def complete_item(self, item_id: str, attempt_id: str, summary: Summary) -> None:
        """
        Persist a Summary and mark the item completed, atomically.

        Raises ConflictError if the attempt was superseded (in-flight marker
        cleared or replaced) or a Summary already exists for the item.
        """
        now = _iso(utcnow())
        with self._connection(immediate=True) as conn:
            row = conn.execute(
                "SELECT processing_status, attempt_id FROM content_items WHERE id = ?",
                (item_id,),
            ).fetchone()
            if (
                row is None
                or row["processing_status"] != ProcessingStatus.PROCESSING.value
                or row["attempt_id"] != attempt_id
            ):
                raise ConflictError(f"Attempt {attempt_id} for item {item_id} is no longer current")

            existing = conn.execute(
                "SELECT 1 FROM summaries WHERE content_id = ? LIMIT 1", (item_id,)
            ).fetchone()
            if existing is not None:
                raise ConflictError(f"Summary already exists for item {item_id}")

            conn.execute(
                """
                INSERT INTO summaries (
                    id, content_id, headline, tldr, full_summary, key_points,
                    key_takeaways, related_ideas, allied_trivia, speakers,
                    model_used, input_tokens, output_tokens, cost_usd,
                    processing_time_ms, quality_score, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.id,
                    item_id,
                    summary.headline,
                    summary.tldr,
                    summary.full_summary,
                    json.dumps(summary.key_points),
                    json.dumps([t.model_dump() for t in summary.key_takeaways]),
                    json.dumps([r.model_dump() for r in summary.related_ideas]),
                    json.dumps([t.model_dump() for t in summary.allied_trivia]),
                    json.dumps([s.model_dump() for s in summary.speakers]),
                    summary.model_used,
                    summary.input_tokens,
                    summary.output_tokens,
                    summary.cost_usd,
                    summary.processing_time_ms,
                    summary.quality_score,
                    now,
                ),
            )
            conn.execute(
                """
                UPDATE content_items SET
                    processing_status = 'completed',
                    retry_count = 0,
                    last_error = NULL,
                    last_retry_at = NULL,
                    attempt_id = NULL,
                    processing_started_at = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (now, item_id),
            )

    def fail_item(
        self,
        item_id: str,
        attempt_id: str,
        error: str,
        max_retries: int,
    ) -> tuple[ProcessingStatus, int] | None:
        """
        Record a failed attempt.

        Returns (new status, new retry count), or None when the attempt was
        already superseded and nothing was written.
        """
        now = _iso(utcnow())
        with self._connection(immediate=True) as conn:
            row = conn.execute(
                """
                SELECT retry_count FROM content_items
                WHERE id = ? AND processing_status = 'processing' AND attempt_id = ?
                """,
                (item_id, attempt_id),
            ).fetchone()
            if row is None:
                return None

            retry_count = row["retry_count"] + 1
            status = (
                ProcessingStatus.PERMANENTLY_FAILED
                if retry_count >= max_retries
                else ProcessingStatus.FAILED
            )
            conn.execute(
                """
                UPDATE content_items SET
                    processing_status = ?,
                    retry_count = ?,
                    last_error = ?,
                    last_retry_at = ?,
                    attempt_id = NULL,
                    processing_started_at = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (status.value, retry_count, error, now, now, item_id),
            )
        return status, retry_count

    def settle_completed(self, item_id: str, attempt_id: str) -> bool:
        """Close an attempt whose item already has a Summary."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE content_items SET
                    processing_status = 'completed',
                    attempt_id = NULL,
                    processing_started_at = NULL,
                    updated_at = ?
                WHERE id = ? AND processing_status = 'processing' AND attempt_id = ?
                  AND EXISTS (SELECT 1 FROM summaries WHERE content_id = content_items.id)
                """,
                (_iso(utcnow()), item_id, attempt_id),
            )
        return cursor.rowcount == 1

    def skip_item(self, item_id: str, attempt_id: str, reason: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE content_items SET
                    processing_status = 'skipped',
                    last_error = ?,
                    attempt_id = NULL,
                    processing_started_at = NULL,
                    updated_at = ?
                WHERE id = ? AND processing_status = 'processing' AND attempt_id = ?
                """,
                (reason, _iso(utcnow()), item_id, attempt_id),
            )
        return cursor.rowcount == 1

    def promote_exhausted(self, max_retries: int) -> int:
        """Move failed items at the retry ceiling to permanently_failed."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE content_items SET
                    processing_status = 'permanently_failed',
                    updated_at = ?
                WHERE processing_status = 'failed' AND retry_count >= ?
                """,
                (_iso(utcnow()), max_retries),
            )
        return cursor.rowcount

    def release_stale_processing(
        self, started_before: datetime, error: str, max_retries: int
    ) -> list[str]:
        """
        Fail items whose in-flight marker outlived its lease.

        Rows left in `retrying` past the same cutoff are released too; a
        retry claim that never reached `processing` has no other way out.
        """
        now = _iso(utcnow())
        cutoff = _iso(started_before)
        with self._connection(immediate=True) as conn:
            rows = conn.execute(
                """
                SELECT id FROM content_items
                WHERE (
                    processing_status = 'processing'
                    AND (processing_started_at IS NULL OR processing_started_at < ?)
                ) OR (processing_status = 'retrying' AND updated_at < ?)
                """,
                (cutoff, cutoff),
            ).fetchall()
            ids = [row["id"] for row in rows]
            for item_id in ids:
                conn.execute(
                    """
                    UPDATE content_items SET
                        processing_status = CASE
                            WHEN retry_count + 1 >= ? THEN 'permanently_failed'
                            ELSE 'failed'
                        END,
                        retry_count = retry_count + 1,
                        last_error = ?,
                        last_retry_at = ?,
                        attempt_id = NULL,
                        processing_started_at = NULL,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (max_retries, error, now, now, item_id),
                )
        return ids

    def list_summarization_candidates(
        self,
        limit: int,
        max_retries: int,
        source_id: str | None = None,
    ) -> list[ContentItem]:
        """Pending items and retryable failed items of auto-summarize sources."""
        query = """
            SELECT i.* FROM content_items i
            JOIN content_sources s ON s.id = i.source_id
            WHERE s.auto_summarize = 1
              AND (
                i.processing_status = 'pending'
                OR (i.processing_status = 'failed' AND i.retry_count < ?)
              )
        """
        params: list = [max_retries]
        if source_id:
            query += " AND i.source_id = ?"
            params.append(source_id)
        query += " ORDER BY i.published_at IS NULL, i.published_at DESC LIMIT ?"
        params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_item(row) for row in rows]

    def status_counts(self) -> dict[str, int]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT processing_status, COUNT(*) AS count
                FROM content_items GROUP BY processing_status
                """
            ).fetchall()
        return {row["processing_status"]: row["count"] for row in rows}

    # ------------------------------------------------------------------
    # Summaries

    def get_summary(self, content_id: str) -> Summary | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM summaries WHERE content_id = ? ORDER BY created_at LIMIT 1",
                (content_id,),
            ).fetchone()
        return self._row_to_summary(row) if row else None

    def summary_exists(self, content_id: str) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM summaries WHERE content_id = ? LIMIT 1", (content_id,)
            ).fetchone()
        return row is not None

    def spend_since(self, since: datetime) -> float:
        """Estimated summarizer cost in USD of summaries created at or after `since`."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(cost_usd), 0) AS total FROM summaries WHERE created_at >= ?",
                (_iso(since),),
            ).fetchone()
        return float(row["total"])

    # ------------------------------------------------------------------
    # Scheduler state

    def get_last_sync_time(self) -> datetime | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM sync_state WHERE key = 'last_sync_time'"
            ).fetchone()
        return _dt(row["value"]) if row else None

    def set_last_sync_time(self, value: datetime) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (key, value) VALUES ('last_sync_time', ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_iso(value),),
            )

    # ------------------------------------------------------------------
    # Row mapping

    def _row_to_source(self, row: sqlite3.Row) -> ContentSource:
        return ContentSource(
            id=row["id"],
            kind=SourceKind(row["kind"]),
            title=row["title"],
            feed_url=row["feed_url"],
            is_active=bool(row["is_active"]),
            auto_summarize=bool(row["auto_summarize"]),
            last_fetched_at=_dt(row["last_fetched_at"]),
            last_successful_fetch_at=_dt(row["last_successful_fetch_at"]),
            last_published_at=_dt(row["last_published_at"]),
            fetch_error_count=row["fetch_error_count"],
            last_error_message=row["last_error_message"],
            created_at=_dt(row["created_at"]),
        )

    def _row_to_item(self, row: sqlite3.Row) -> ContentItem:
        return ContentItem(
            id=row["id"],
            source_id=row["source_id"],
            natural_key=row["natural_key"],
            content_type=ContentType(row["content_type"]),
            title=row["title"],
            url=row["url"],
            author=row["author"],
            image_url=row["image_url"],
            published_at=_dt(row["published_at"]),
            raw_content=row["raw_content"] or "",
            extracted_text=row["extracted_text"] or "",
            transcript=row["transcript"],
            content_hash=row["content_hash"] or "",
            word_count=row["word_count"] or 0,
            duration_seconds=row["duration_seconds"],
            audio_url=row["audio_url"],
            categories=json.loads(row["categories"] or "[]"),
            processing_status=ProcessingStatus(row["processing_status"]),
            retry_count=row["retry_count"],
            last_error=row["last_error"],
            last_retry_at=_dt(row["last_retry_at"]),
            processing_started_at=_dt(row["processing_started_at"]),
            attempt_id=row["attempt_id"],
        )

    def _row_to_summary(self, row: sqlite3.Row) -> Summary:
        return Summary(
            id=row["id"],
            content_id=row["content_id"],
            headline=row["headline"] or "",
            tldr=row["tldr"] or "",
            full_summary=row["full_summary"] or "",
            key_points=json.loads(row["key_points"] or "[]"),
            key_takeaways=json.loads(row["key_takeaways"] or "[]"),
            related_ideas=json.loads(row["related_ideas"] or "[]"),
            allied_trivia=json.loads(row["allied_trivia"] or "[]"),
            speakers=json.loads(row["speakers"] or "[]"),
            model_used=row["model_used"] or "",
            input_tokens=row["input_tokens"] or 0,
            output_tokens=row["output_tokens"] or 0,
            cost_usd=row["cost_usd"] or 0.0,
            processing_time_ms=row["processing_time_ms"] or 0,
            quality_score=row["quality_score"] or 0,
            created_at=_dt(row["created_at"]),
        )
