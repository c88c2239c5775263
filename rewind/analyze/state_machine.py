"""
Summarization state machine.

    pending -> processing -> completed
    pending/processing -> failed -> (retrying -> processing)* -> permanently_failed
    processing -> skipped (no summarizable text)

Every transition is a compare-and-swap on the persisted status, and the
attempt id written on entry to `processing` is the in-flight marker. A
summarizer call that outlives its timeout is abandoned: its late result
cannot complete the item because the marker no longer matches.
"""

from __future__ import annotations

import concurrent.futures
import threading
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import NamedTuple
from uuid import uuid4

from rewind.analyze.quality import quality_score
from rewind.analyze.summarizer import Summarizer, SummarizerResult
from rewind.analyze.variants import PodcastLike, Variant, resolve_variant
from rewind.config import Settings
from rewind.errors import (
    BudgetExceededError,
    ConflictError,
    NotFoundError,
    OperationResult,
    PipelineError,
    StorageError,
    SummarizerError,
    TransportError,
    ValidationError,
)
from rewind.logging_config import get_logger
from rewind.models import (
    RETRYABLE_STATUSES,
    ContentItem,
    ItemStatus,
    KeyTakeaway,
    ProcessingStatus,
    RelatedIdea,
    Speaker,
    Summary,
    TriviaItem,
)
from rewind.storage.cache import SUMMARY_KIND, CacheStore, make_cache_key
from rewind.storage.db import Database
from rewind.sync.logger import SyncLogger, create_sync_logger

logger = get_logger("state_machine")

AUTOMATIC_ENTRY_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.FAILED)


class BacklogReport(NamedTuple):
    """Outcome of one backlog sweep."""

    attempted: int
    completed: int
    failed: int
    skipped: int
    deferred: int
    promoted: int
    results: list[OperationResult]


def _optional(value: str | None) -> str | None:
    return value or None


def build_summary(item_id: str, result: SummarizerResult) -> Summary:
    """Turn summarizer output into a Summary with its quality score."""
    output = result.output
    summary = Summary(
        id=uuid4().hex,
        content_id=item_id,
        headline=output.get("headline", "").strip(),
        tldr=output.get("tldr", "").strip(),
        full_summary=output.get("full_summary", "").strip(),
        key_points=[point for point in output.get("key_points", []) if point],
        key_takeaways=[
            KeyTakeaway(
                takeaway=entry["takeaway"],
                context=entry.get("context", ""),
                actionable=_optional(entry.get("actionable")),
                confidence=min(max(float(entry.get("confidence", 0.8)), 0.0), 1.0),
                source_quote=_optional(entry.get("source_quote")),
                timestamp=_optional(entry.get("timestamp")),
            )
            for entry in output.get("key_takeaways", [])
        ],
        related_ideas=[RelatedIdea(**entry) for entry in output.get("related_ideas", [])],
        allied_trivia=[TriviaItem(**entry) for entry in output.get("allied_trivia", [])],
        speakers=[
            Speaker(
                name=entry["name"],
                role=_optional(entry.get("role")),
                key_contributions=entry.get("key_contributions", []),
            )
            for entry in output.get("speakers", [])
        ],
        model_used=result.model,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        cost_usd=result.cost_usd,
        processing_time_ms=result.duration_ms,
    )
    summary.quality_score = quality_score(summary)
    return summary


class SummarizationStateMachine:
    """Drives content items through summarization."""

    def __init__(
        self,
        db: Database,
        summarizer: Summarizer,
        settings: Settings,
        cache: CacheStore | None = None,
    ):
        self.db = db
        self.summarizer = summarizer
        self.settings = settings
        self.cache = cache
        self._permits = threading.BoundedSemaphore(settings.summarize_concurrency)

    # ------------------------------------------------------------------
    # Exposed operations

    def summarize(self, item_id: str) -> OperationResult:
        """Automatic path: pending, or failed below the retry ceiling, to processing."""
        try:
            item = self.db.get_item(item_id)
            if item is None:
                return NotFoundError(f"Item {item_id} not found").to_result()
            if self.db.summary_exists(item_id):
                return ConflictError(f"Item {item_id} already has a summary").to_result()
            self._check_budget()

            attempt_id = uuid4().hex
            claimed = self.db.claim_item(
                item_id,
                AUTOMATIC_ENTRY_STATUSES,
                attempt_id,
                max_retry_count=self.settings.max_retries,
            )
            if not claimed:
                current = self.db.get_item(item_id)
                status = current.processing_status.value if current else "missing"
                return ConflictError(
                    f"Item {item_id} is not eligible for automatic summarization (status: {status})"
                ).to_result()
        except PipelineError as exc:
            return exc.to_result()

        return self._attempt(item, attempt_id, is_retry=False)

    def retry(self, item_id: str) -> OperationResult:
        """
        Manual retry. Accepted only from failed, permanently_failed or
        skipped; resets the retry count and runs a fresh attempt.
        """
        try:
            item = self.db.get_item(item_id)
            if item is None:
                return NotFoundError(f"Item {item_id} not found").to_result()

            if item.processing_status not in RETRYABLE_STATUSES:
                reason = f"Cannot retry item in status '{item.processing_status.value}'"
                logger.info(f"Retry rejected for {item_id}: {reason}")
                return ConflictError(reason).to_result()
            if self.db.summary_exists(item_id):
                return ConflictError(f"Item {item_id} already has a summary").to_result()
            self._check_budget()

            attempt_id = uuid4().hex
            if not self.db.claim_for_retry(item_id, RETRYABLE_STATUSES, attempt_id):
                return ConflictError(f"Item {item_id} changed state; retry not applied").to_result()
        except PipelineError as exc:
            logger.warning(f"Retry of {item_id} not applied: {exc}")
            return exc.to_result()

        return self._attempt(item, attempt_id, is_retry=True)

    def get_status(self, item_id: str) -> ItemStatus:
        item = self.db.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return ItemStatus(
            item_id=item.id,
            processing_status=item.processing_status,
            retry_count=item.retry_count,
            last_error=item.last_error,
            has_summary=self.db.summary_exists(item.id),
        )

    def process_pending(self, limit: int = 20, source_id: str | None = None) -> BacklogReport:
        """
        Backlog sweep: attempt pending items and failed items whose backoff
        has elapsed. Failed items at the ceiling become permanently_failed.
        """
        promoted = self.db.promote_exhausted(self.settings.max_retries)
        if promoted:
            logger.info(f"{promoted} item(s) reached the retry ceiling")

        now = datetime.now(timezone.utc)
        candidates = self.db.list_summarization_candidates(
            limit=limit * 4,
            max_retries=self.settings.max_retries,
            source_id=source_id,
        )
        ready = [item for item in candidates if self._backoff_elapsed(item, now)]
        due = ready[:limit]
        deferred = len(candidates) - len(ready)
        if due:
            try:
                self._check_budget()
            except BudgetExceededError as exc:
                logger.warning(f"Backlog sweep deferred: {exc}")
                deferred, due = len(candidates), []

        results: list[OperationResult] = []
        if due:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=self.settings.summarize_concurrency,
                thread_name_prefix="backlog",
            ) as executor:
                results = list(executor.map(lambda item: self.summarize(item.id), due))

        # Items turned away because the budget ran out mid-sweep were never claimed
        over_budget = sum(1 for r in results if r.code == BudgetExceededError.code)
        not_failures = (ValidationError.code, BudgetExceededError.code)
        return BacklogReport(
            attempted=len(due) - over_budget,
            completed=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success and r.code not in not_failures),
            skipped=sum(1 for r in results if r.code == ValidationError.code),
            deferred=deferred + over_budget,
            promoted=promoted,
            results=results,
        )

    def recover_stale(self) -> list[str]:
        """Return items stuck in processing or retrying past their lease to failed."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.settings.processing_lease_seconds)
        released = self.db.release_stale_processing(
            cutoff, "Processing lease expired", self.settings.max_retries
        )
        for item_id in released:
            logger.warning(f"Released stale in-flight item {item_id}")
        return released

    # ------------------------------------------------------------------
    # Attempt

    def _backoff_elapsed(self, item: ContentItem, now: datetime) -> bool:
        if item.processing_status != ProcessingStatus.FAILED or item.last_retry_at is None:
            return True
        schedule = self.settings.retry_backoff_minutes
        step = schedule[min(max(item.retry_count - 1, 0), len(schedule) - 1)]
        return now - item.last_retry_at >= timedelta(minutes=step)

    def _min_words(self, variant: Variant) -> int:
        if isinstance(variant, PodcastLike):
            return self.settings.min_words_for_podcast_summary
        return self.settings.min_words_for_summary

    def _attempt(self, item: ContentItem, attempt_id: str, is_retry: bool) -> OperationResult:
        slog = create_sync_logger("Summarize", item_id=item.id, item_title=item.title)
        try:
            source = self.db.get_source(item.source_id)
            variant = resolve_variant(item, source)

            min_words = self._min_words(variant)
            if variant.word_count == 0 or variant.word_count < min_words:
                error = ValidationError(
                    f"Not enough text to summarize ({variant.word_count} words, need {min_words})"
                )
                self.db.skip_item(item.id, attempt_id, str(error))
                slog.info("Skipped", reason=str(error))
                return error.to_result()
        except PipelineError as exc:
            return self._fail(item, attempt_id, exc, is_retry, slog)

        with self._permits:
            try:
                result = self._summarize_once(item, variant)
                summary = build_summary(item.id, result)
                self.db.complete_item(item.id, attempt_id, summary)
            except ConflictError as exc:
                try:
                    settled = self.db.settle_completed(item.id, attempt_id)
                except StorageError as store_exc:
                    slog.error("Could not settle attempt", error=str(store_exc))
                    return store_exc.to_result()
                if settled:
                    slog.warning("Summary already existed; item marked completed")
                else:
                    slog.warning("Attempt superseded; result discarded", error=str(exc))
                return exc.to_result()
            except PipelineError as exc:
                return self._fail(item, attempt_id, exc, is_retry, slog)

        self._forget_cached(item)
        slog.summarization_result(
            item.title,
            success=True,
            is_retry=is_retry,
            tokens_used=summary.input_tokens + summary.output_tokens,
            processing_time_ms=summary.processing_time_ms,
            quality_score=summary.quality_score,
        )
        return OperationResult.ok(f"Summarized with quality score {summary.quality_score}")

    def _summarize_once(self, item: ContentItem, variant: Variant) -> SummarizerResult:
        """Return a cached result for this content, or call the summarizer."""
        cache_key = make_cache_key(item.id, item.content_hash, self.summarizer.model)
        if self.cache is not None:
            try:
                cached = self.cache.get(SUMMARY_KIND, cache_key)
            except StorageError as exc:
                logger.warning(f"Cache read failed, calling summarizer: {exc}")
                cached = None
            if cached is not None:
                logger.info(f"Cache hit: {item.title[:50]}")
                return SummarizerResult(**cached)

        timeout = self.settings.summarize_timeout_seconds
        try:
            result = self._start_call(item, variant).result(timeout=timeout)
        except concurrent.futures.TimeoutError as exc:
            raise TransportError(f"Summarizer timed out after {timeout}s") from exc
        except PipelineError:
            raise
        except Exception as exc:
            raise SummarizerError(f"Unexpected summarizer failure: {exc}") from exc

        if self.cache is not None:
            try:
                self.cache.set(
                    SUMMARY_KIND, cache_key, asdict(result), ttl_days=self.settings.cache_ttl_days
                )
            except StorageError as exc:
                logger.warning(f"Could not cache summarizer result: {exc}")
        return result

    def _start_call(self, item: ContentItem, variant: Variant) -> concurrent.futures.Future:
        """
        Run one summarizer call on a thread of its own.

        The call starts at once, so the timeout measures the call and never
        time spent waiting behind an abandoned one. A call that outlives its
        timeout keeps its thread until the client returns; nothing reads its
        result.
        """
        future: concurrent.futures.Future = concurrent.futures.Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.summarizer.summarize_variant(variant))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(target=run, name=f"summarizer-{item.id[:8]}", daemon=True).start()
        return future

    def _check_budget(self) -> None:
        """Raise BudgetExceededError once a configured spend budget is used up."""
        daily = self.settings.daily_budget_usd
        monthly = self.settings.monthly_budget_usd
        if daily is None and monthly is None:
            return

        start_of_day = datetime.now().astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
        limits = [("Daily", daily, start_of_day), ("Monthly", monthly, start_of_day.replace(day=1))]
        for label, limit, since in limits:
            if limit is None:
                continue
            spent = self.db.spend_since(since)
            if spent >= limit:
                raise BudgetExceededError(
                    f"{label} summarizer budget of ${limit:.2f} reached (spent ${spent:.2f})"
                )

    def _forget_cached(self, item: ContentItem) -> None:
        if self.cache is None:
            return
        try:
            self.cache.delete(SUMMARY_KIND, make_cache_key(item.id, item.content_hash, self.summarizer.model))
        except StorageError as exc:
            logger.debug(f"Cache cleanup failed; entry will expire: {exc}")

    def _fail(
        self,
        item: ContentItem,
        attempt_id: str,
        error: PipelineError,
        is_retry: bool,
        slog: SyncLogger,
    ) -> OperationResult:
        try:
            outcome = self.db.fail_item(item.id, attempt_id, str(error), self.settings.max_retries)
        except StorageError as exc:
            slog.error("Could not record failure; stale recovery will release the item", error=str(exc))
            return error.to_result()

        if outcome is None:
            slog.warning("Attempt superseded before failure was recorded", error=str(error))
            return error.to_result()

        status, retry_count = outcome
        slog.summarization_result(
            item.title,
            success=False,
            is_retry=is_retry,
            retry_count=retry_count,
            error=str(error),
        )
        if status == ProcessingStatus.PERMANENTLY_FAILED:
            slog.error("Retry ceiling reached; item permanently failed", retry_count=retry_count)
        return error.to_result()
