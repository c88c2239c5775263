"""
Sync orchestration: fetch every active source, normalize its records and
persist new and changed items.

Each source is isolated: a fetch, parse or storage failure is recorded on
that source and reported in its SourceResult, and the run moves on.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Callable
from datetime import datetime, timezone
from time import perf_counter
from typing import TYPE_CHECKING
from uuid import uuid4

from rewind.config import Settings
from rewind.errors import ConflictError, NotFoundError, ParseError, PipelineError, StorageError
from rewind.ingest.feeds import FetchResult, fetch_source
from rewind.ingest.normalize import classify, natural_key_for
from rewind.logging_config import get_logger, reset_run_context, set_run_context
from rewind.models import Classification, ContentItem, ContentSource, SourceResult, SyncRun
from rewind.storage.db import Database
from rewind.sync.logger import SyncLogger, create_sync_logger

if TYPE_CHECKING:
    from rewind.analyze.queue import SummarizationQueue

logger = get_logger("sync")

Fetcher = Callable[..., FetchResult]


class SyncOrchestrator:
    """Runs sync passes over the stored sources."""

    def __init__(
        self,
        db: Database,
        settings: Settings,
        fetcher: Fetcher = fetch_source,
        queue: SummarizationQueue | None = None,
    ):
        self.db = db
        self.settings = settings
        self.fetcher = fetcher
        self.queue = queue

    def sync_all(self) -> SyncRun:
        """Sync every active source with bounded parallelism."""
        run_id = uuid4().hex[:12]
        token = set_run_context(run_id)
        started_at = datetime.now(timezone.utc)
        started = perf_counter()
        run_logger = create_sync_logger("Sync", operation="sync_all")

        try:
            sources = self.db.list_sources(active_only=True)
            run_logger.sync_start(len(sources))

            results: list[SourceResult] = []
            if sources:
                workers = min(self.settings.sync_max_workers, len(sources))
                with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
                    future_to_source = {
                        executor.submit(self._sync_source, source, run_id): source
                        for source in sources
                    }
                    for future in concurrent.futures.as_completed(future_to_source):
                        source = future_to_source[future]
                        try:
                            results.append(future.result())
                        except Exception as exc:
                            logger.exception(f"Unhandled error syncing {source.title}")
                            results.append(
                                SourceResult(
                                    source_id=source.id,
                                    source_name=source.title,
                                    error=f"Unhandled sync error: {exc}",
                                    error_code="internal_error",
                                )
                            )

            run = SyncRun.from_results(run_id, started_at, results, perf_counter() - started)
            run_logger.sync_complete(run.summary_dict())
            return run
        finally:
            reset_run_context(token)

    def sync_one(self, source_id: str) -> SourceResult:
        """Sync a single source by id."""
        run_id = uuid4().hex[:12]
        token = set_run_context(run_id)
        try:
            source = self.db.get_source(source_id)
            if source is None:
                error = NotFoundError(f"Source {source_id} not found")
                return SourceResult(
                    source_id=source_id,
                    error=str(error),
                    error_code=error.code,
                    retryable=error.retryable,
                )
            return self._sync_source(source, run_id)
        finally:
            reset_run_context(token)

    def _sync_source(self, source: ContentSource, owner: str) -> SourceResult:
        slog = create_sync_logger("Sync", source_id=source.id, source_name=source.title)
        started = perf_counter()

        try:
            acquired = self.db.acquire_source_lock(
                source.id, owner, self.settings.sync_lock_ttl_seconds
            )
        except StorageError as exc:
            slog.source_error(str(exc), exc.code)
            return self._failed(source, exc, started)

        if not acquired:
            conflict = ConflictError("Source is already being synced by another run")
            slog.warning(str(conflict))
            return self._failed(source, conflict, started)

        try:
            slog.source_start()
            return self._fetch_and_store(source, slog, started)
        finally:
            try:
                self.db.release_source_lock(source.id, owner)
            except StorageError as exc:
                slog.warning("Could not release source lock; it will expire", error=str(exc))

    def _fetch_and_store(self, source: ContentSource, slog: SyncLogger, started: float) -> SourceResult:
        try:
            fetch = self.fetcher(
                source,
                timeout=self.settings.fetch_timeout_seconds,
                max_entries=self.settings.max_entries_per_feed,
            )
        except PipelineError as exc:
            fetch = FetchResult(
                source_id=source.id,
                records=[],
                success=False,
                error=str(exc),
                error_code=exc.code,
                retryable=exc.retryable,
            )
        if not fetch.success:
            slog.source_error(fetch.error or "Unknown fetch error", fetch.error_code)
            self._record_failure(source, fetch.error or "Unknown fetch error", slog)
            return SourceResult(
                source_id=source.id,
                source_name=source.title,
                error=fetch.error,
                error_code=fetch.error_code,
                retryable=fetch.retryable,
                duration_seconds=perf_counter() - started,
            )

        result = SourceResult(
            source_id=source.id,
            source_name=source.title,
            items_found=len(fetch.records),
        )

        try:
            keys = []
            for raw in fetch.records:
                try:
                    keys.append(natural_key_for(raw))
                except ParseError:
                    continue
            known = self.db.get_items_by_natural_keys(source.id, keys)

            to_persist: dict[str, ContentItem] = {}
            outcomes: dict[str, Classification] = {}
            for raw in fetch.records:
                try:
                    normalized = classify(source, raw, known)
                except ParseError as exc:
                    result.record_errors.append(str(exc))
                    slog.warning("Skipping malformed record", error=str(exc))
                    continue

                item = normalized.item
                slog.item_processed(item.title, normalized.outcome.value, item.word_count)
                if normalized.outcome == Classification.SKIPPED:
                    result.items_skipped += 1
                    continue

                # A repeat key inside one fetch stays counted as new
                if outcomes.get(item.natural_key) != Classification.NEW:
                    outcomes[item.natural_key] = normalized.outcome
                to_persist[item.natural_key] = item
                known[item.natural_key] = item

            ids = self.db.upsert_items(list(to_persist.values()))

            checkpoint = max(
                (raw.published for raw in fetch.records if raw.published is not None),
                default=None,
            )
            self.db.record_fetch_success(source.id, checkpoint)
        except StorageError as exc:
            slog.source_error(str(exc), exc.code)
            self._record_failure(source, str(exc), slog)
            return self._failed(source, exc, started, items_found=len(fetch.records))

        for key, outcome in outcomes.items():
            if outcome == Classification.NEW:
                result.items_added += 1
                result.added_item_ids.append(ids[key])
            else:
                result.items_updated += 1

        result.success = True
        result.duration_seconds = perf_counter() - started
        slog.source_success(
            result.items_found, result.items_added, result.items_updated, result.items_skipped
        )

        if source.auto_summarize and self.queue is not None and result.added_item_ids:
            self.queue.submit(result.added_item_ids)

        return result

    def _record_failure(self, source: ContentSource, message: str, slog: SyncLogger) -> None:
        try:
            self.db.record_fetch_failure(source.id, message)
        except StorageError as exc:
            slog.error("Could not record fetch failure", error=str(exc))

    def _failed(
        self,
        source: ContentSource,
        error: PipelineError,
        started: float,
        items_found: int = 0,
    ) -> SourceResult:
        return SourceResult(
            source_id=source.id,
            source_name=source.title,
            items_found=items_found,
            error=str(error),
            error_code=error.code,
            retryable=error.retryable,
            duration_seconds=perf_counter() - started,
        )
