"""
Wiring of storage, fetcher, orchestrator and summarization.

`Pipeline` is the exposed surface used by the CLI: sync_all, sync_one,
retry and get_status, plus source registration.
"""

from __future__ import annotations

from typing import NamedTuple
from urllib.parse import urlparse

from rewind.analyze.queue import QueueReport, SummarizationQueue
from rewind.analyze.state_machine import BacklogReport, SummarizationStateMachine
from rewind.analyze.summarizer import Summarizer
from rewind.config import Settings
from rewind.errors import NotFoundError, OperationResult, ValidationError
from rewind.ingest.feeds import fetch_source
from rewind.ingest.normalize import content_hash
from rewind.ingest.parser import count_words
from rewind.llm import LLMClient, create_client
from rewind.logging_config import get_logger
from rewind.models import ContentSource, ItemStatus, SourceKind, SourceResult, SyncRun
from rewind.storage.cache import CacheStore
from rewind.storage.db import Database
from rewind.sync.orchestrator import SyncOrchestrator

logger = get_logger("pipeline")


class PassReport(NamedTuple):
    run: SyncRun
    queued: QueueReport | None
    backlog: BacklogReport | None


class SourceRegistration(OperationResult):
    """Response of source registration: one shape whether new or existing."""

    source: ContentSource | None = None
    created: bool = False


class Pipeline:
    """Owns the long-lived components for one process."""

    def __init__(
        self,
        settings: Settings,
        db: Database | None = None,
        client: LLMClient | None = None,
        summaries: bool = True,
        use_cache: bool = True,
    ):
        self.settings = settings
        self.db = db or Database(settings.db_path)

        self.state_machine: SummarizationStateMachine | None = None
        self.queue: SummarizationQueue | None = None
        if summaries:
            if client is None:
                client = create_client(
                    provider=settings.llm_provider,
                    api_key=settings.llm_api_key,
                    model=settings.llm_model,
                    max_retries=settings.llm_retries,
                    timeout_seconds=settings.summarize_timeout_seconds,
                )
            cache = (
                CacheStore(settings.db_path, default_ttl_days=settings.cache_ttl_days)
                if use_cache
                else None
            )
            self.state_machine = SummarizationStateMachine(
                db=self.db,
                summarizer=Summarizer(client, max_chunk_chars=settings.max_chunk_chars),
                settings=settings,
                cache=cache,
            )
            self.queue = SummarizationQueue(
                self.state_machine.summarize, max_workers=settings.summarize_concurrency
            )

        self.orchestrator = SyncOrchestrator(self.db, settings, fetcher=fetch_source, queue=self.queue)

    def close(self) -> None:
        if self.queue is not None:
            self.queue.shutdown(wait=True)

    def __enter__(self) -> Pipeline:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _require_state_machine(self) -> SummarizationStateMachine:
        if self.state_machine is None:
            raise RuntimeError("Pipeline was built without summarization")
        return self.state_machine

    def sync_all(self) -> SyncRun:
        return self.orchestrator.sync_all()

    def sync_one(self, source_id: str) -> SourceResult:
        return self.orchestrator.sync_one(source_id)

    def retry(self, item_id: str) -> OperationResult:
        return self._require_state_machine().retry(item_id)

    def get_status(self, item_id: str) -> ItemStatus:
        if self.state_machine is not None:
            return self.state_machine.get_status(item_id)
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

    def register_source(
        self,
        feed_url: str,
        title: str | None = None,
        kind: SourceKind = SourceKind.RSS,
        auto_summarize: bool = True,
    ) -> SourceRegistration:
        """Subscribe to a feed. Registering a known URL returns the existing source."""
        if not title:
            title = self._discover_title(feed_url, kind)
        source, created = self.db.register_source(
            title=title, feed_url=feed_url, kind=kind, auto_summarize=auto_summarize
        )
        message = "Source added" if created else "Source already registered"
        logger.info(f"{message}: {source.title} ({source.feed_url})")
        return SourceRegistration(success=True, message=message, source=source, created=created)

    def _discover_title(self, feed_url: str, kind: SourceKind) -> str:
        probe = ContentSource(id="probe", kind=kind, title=feed_url, feed_url=feed_url)
        result = fetch_source(probe, timeout=self.settings.fetch_timeout_seconds, max_entries=1)
        if result.success and result.feed_title:
            return result.feed_title
        return urlparse(feed_url).netloc or feed_url

    def attach_transcript(self, item_id: str, transcript: str) -> OperationResult:
        """Store a transcript; it takes precedence over show notes on the next attempt."""
        item = self.db.get_item(item_id)
        if item is None:
            return NotFoundError(f"Item {item_id} not found").to_result()
        transcript = transcript.strip()
        if not transcript:
            return ValidationError("Transcript is empty").to_result()

        item.transcript = transcript
        self.db.attach_transcript(item_id, transcript, content_hash(item))
        logger.info(f"Attached transcript ({count_words(transcript)} words) to {item_id}")
        return OperationResult.ok("Transcript attached")

    def run_pass(self, backlog_limit: int = 20) -> PassReport:
        """
        One full pass: release stale leases, sync every active source, wait
        for the summaries queued by the sync, then sweep the backlog.
        """
        if self.state_machine is not None:
            self.state_machine.recover_stale()

        run = self.sync_all()

        queued = backlog = None
        if self.queue is not None and self.state_machine is not None:
            queued = self.queue.drain()
            for failure in queued.failures:
                logger.warning(f"Summary for {failure.item_id} failed ({failure.code}): {failure.message}")
            backlog = self.state_machine.process_pending(limit=backlog_limit)

        return PassReport(run=run, queued=queued, backlog=backlog)
