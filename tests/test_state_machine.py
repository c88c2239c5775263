"""Tests for the summarization state machine."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from rewind.analyze.state_machine import SummarizationStateMachine
from rewind.analyze.summarizer import Summarizer
from rewind.errors import NotFoundError, StorageError
from rewind.ingest.normalize import build_item
from rewind.llm.base import LLMError
from rewind.models import ProcessingStatus, Summary
from rewind.storage.cache import CacheStore

from fakes import FakeLLM, make_record, transient_error


def _machine(db, settings, client, cache=None) -> SummarizationStateMachine:
    return SummarizationStateMachine(db, Summarizer(client), settings, cache=cache)


def _add(db, source, key="a", **record_fields) -> str:
    ids = db.upsert_items([build_item(source, make_record(key, **record_fields))])
    return ids[key]


def _fail(db, item_id, times=1):
    """Record `times` failed automatic attempts against a pending item."""
    db.claim_item(item_id, [ProcessingStatus.PENDING], "setup")
    db.fail_item(item_id, "setup", "boom", max_retries=3)
    for attempt in range(1, times):
        db.claim_item(item_id, [ProcessingStatus.FAILED], f"setup-{attempt}")
        db.fail_item(item_id, f"setup-{attempt}", "boom", max_retries=3)


class TestSummarize:
    """Tests for the automatic path."""

    def test_pending_item_completes_with_summary(self, db, settings, source):
        item_id = _add(db, source)
        machine = _machine(db, settings, FakeLLM())

        result = machine.summarize(item_id)

        assert result.success
        status = machine.get_status(item_id)
        assert status.processing_status == ProcessingStatus.COMPLETED
        assert status.retry_count == 0
        summary = db.get_summary(item_id)
        assert summary.quality_score == 80
        assert summary.model_used == "fake-model"
        assert summary.input_tokens == 100
        assert len(summary.key_takeaways) == 2
        assert summary.key_takeaways[1].actionable is None

    def test_short_item_is_skipped(self, db, settings, source):
        item_id = _add(db, source, body="Too short to summarize.")
        client = FakeLLM()

        result = _machine(db, settings, client).summarize(item_id)

        assert not result.success
        assert result.code == "validation_error"
        assert db.get_item(item_id).processing_status == ProcessingStatus.SKIPPED
        assert client.prompts == []

    def test_transient_failure_is_retryable(self, db, settings, source):
        item_id = _add(db, source)

        result = _machine(db, settings, FakeLLM(error=transient_error())).summarize(item_id)

        assert not result.success
        assert result.code == "transport_error"
        assert result.retryable
        item = db.get_item(item_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.retry_count == 1
        assert "503" in item.last_error

    def test_rejected_request_is_summarizer_error(self, db, settings, source):
        item_id = _add(db, source)

        result = _machine(db, settings, FakeLLM(error=LLMError("invalid api key"))).summarize(item_id)

        assert result.code == "summarizer_error"
        assert not result.retryable

    def test_retry_ceiling_makes_failure_permanent(self, db, settings, source):
        item_id = _add(db, source)
        machine = _machine(db, settings, FakeLLM(error=transient_error()))

        for _ in range(settings.max_retries):
            machine.summarize(item_id)

        item = db.get_item(item_id)
        assert item.processing_status == ProcessingStatus.PERMANENTLY_FAILED
        assert item.retry_count == settings.max_retries

        refused = machine.summarize(item_id)
        assert refused.code == "conflict"
        assert db.get_item(item_id).retry_count == settings.max_retries

    def test_completed_item_is_not_resummarized(self, db, settings, source):
        item_id = _add(db, source)
        client = FakeLLM()
        machine = _machine(db, settings, client)
        machine.summarize(item_id)

        again = machine.summarize(item_id)

        assert again.code == "conflict"
        assert len(client.prompts) == 1

    def test_unknown_item(self, db, settings):
        machine = _machine(db, settings, FakeLLM())
        assert machine.summarize("missing").code == "not_found"
        with pytest.raises(NotFoundError):
            machine.get_status("missing")


class TestTimeout:
    """Tests for summarizer calls that outlive their timeout."""

    def test_timed_out_call_fails_and_late_result_is_discarded(self, db, settings, source):
        settings.summarize_timeout_seconds = 1
        settings.summarize_concurrency = 1
        first = _add(db, source, "a")
        second = _add(db, source, "b")
        release = threading.Event()
        returned = threading.Event()
        client = FakeLLM()

        def hold_first_call():
            if len(client.prompts) == 1:
                release.wait(timeout=10)
                returned.set()

        client.on_call = hold_first_call
        machine = _machine(db, settings, client)

        timed_out = machine.summarize(first)

        assert timed_out.code == "transport_error"
        assert "timed out" in timed_out.message
        item = db.get_item(first)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.retry_count == 1

        # The held call keeps running; the next item still gets a call of its own
        assert machine.summarize(second).success
        assert len(client.prompts) == 2
        assert db.get_item(second).retry_count == 0

        release.set()
        assert returned.wait(timeout=5)
        assert not db.summary_exists(first)
        assert db.get_item(first).processing_status == ProcessingStatus.FAILED


class TestStorageFailures:
    """Storage errors come back as results and never strand an item."""

    def test_failed_retry_claim_leaves_item_retryable(self, db, settings, source, monkeypatch):
        item_id = _add(db, source)
        _fail(db, item_id)
        machine = _machine(db, settings, FakeLLM())
        original = db.claim_for_retry

        def locked(*args, **kwargs):
            raise StorageError("database is locked")

        monkeypatch.setattr(db, "claim_for_retry", locked)
        result = machine.retry(item_id)

        assert result.code == "storage_error"
        assert result.retryable
        assert db.get_item(item_id).processing_status == ProcessingStatus.FAILED

        monkeypatch.setattr(db, "claim_for_retry", original)
        assert machine.retry(item_id).success

    def test_failure_after_claim_is_recorded(self, db, settings, source, monkeypatch):
        item_id = _add(db, source)
        client = FakeLLM()
        machine = _machine(db, settings, client)

        def broken(*args, **kwargs):
            raise StorageError("disk I/O error")

        monkeypatch.setattr(db, "get_source", broken)
        result = machine.summarize(item_id)

        assert result.code == "storage_error"
        item = db.get_item(item_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.retry_count == 1
        assert client.prompts == []


class TestBudget:
    """Summarization pauses once the configured spend is used up."""

    def test_exhausted_daily_budget_leaves_item_pending(self, db, settings, source):
        settings.daily_budget_usd = 0.0
        item_id = _add(db, source)
        client = FakeLLM()

        result = _machine(db, settings, client).summarize(item_id)

        assert result.code == "budget_exceeded"
        assert result.retryable
        assert db.get_item(item_id).processing_status == ProcessingStatus.PENDING
        assert client.prompts == []

    def test_earlier_spend_counts_toward_budget(self, db, settings, source):
        settings.monthly_budget_usd = 0.3
        first = _add(db, source, "a")
        second = _add(db, source, "b")
        db.claim_item(first, [ProcessingStatus.PENDING], "earlier")
        db.complete_item(
            first, "earlier", Summary(id="earlier", content_id=first, headline="H", tldr="T", cost_usd=0.5)
        )

        result = _machine(db, settings, FakeLLM()).summarize(second)

        assert result.code == "budget_exceeded"
        assert "Monthly" in result.message

    def test_backlog_sweep_defers_when_over_budget(self, db, settings, source):
        settings.daily_budget_usd = 0.0
        ids = [_add(db, source, key) for key in ("a", "b")]

        report = _machine(db, settings, FakeLLM()).process_pending()

        assert report.attempted == 0
        assert report.deferred == 2
        assert all(db.get_item(i).processing_status == ProcessingStatus.PENDING for i in ids)


class TestTextSelection:
    """The transcript is what gets summarized when one exists."""

    def test_transcript_preferred_over_show_notes(self, db, settings, podcast_source):
        transcript = "Welcome back to the show where we talk about compilers. " * 40
        item_id = _add(db, podcast_source, body="Show notes mention sponsors only. " * 40, transcript=transcript)
        client = FakeLLM()

        result = _machine(db, settings, client).summarize(item_id)

        assert result.success
        assert "talk about compilers" in client.prompts[0]
        assert "sponsors" not in client.prompts[0]
        assert db.get_summary(item_id).speakers[0].name == "Host"

    def test_podcast_needs_more_words(self, db, settings, podcast_source):
        item_id = _add(db, podcast_source, body="word " * 150)

        result = _machine(db, settings, FakeLLM()).summarize(item_id)

        assert result.code == "validation_error"


class TestRetry:
    """Tests for manual retry gating."""

    def test_completed_item_is_rejected_without_change(self, db, settings, source):
        item_id = _add(db, source)
        machine = _machine(db, settings, FakeLLM())
        machine.summarize(item_id)
        before = db.get_item(item_id)

        result = machine.retry(item_id)

        assert not result.success
        assert result.code == "conflict"
        assert db.get_item(item_id) == before
        assert db.get_summary(item_id) is not None

    def test_pending_item_is_rejected(self, db, settings, source):
        item_id = _add(db, source)
        result = _machine(db, settings, FakeLLM()).retry(item_id)
        assert result.code == "conflict"
        assert db.get_item(item_id).processing_status == ProcessingStatus.PENDING

    def test_failed_item_moves_to_processing(self, db, settings, source):
        item_id = _add(db, source)
        _fail(db, item_id)
        observed = []
        client = FakeLLM(on_call=lambda: observed.append(db.get_item(item_id).processing_status))

        result = _machine(db, settings, client).retry(item_id)

        assert observed == [ProcessingStatus.PROCESSING]
        assert result.success
        assert db.get_item(item_id).processing_status == ProcessingStatus.COMPLETED

    def test_permanently_failed_item_gets_fresh_budget(self, db, settings, source):
        item_id = _add(db, source)
        _fail(db, item_id, times=3)
        assert db.get_item(item_id).processing_status == ProcessingStatus.PERMANENTLY_FAILED

        result = _machine(db, settings, FakeLLM(error=transient_error())).retry(item_id)

        assert not result.success
        item = db.get_item(item_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.retry_count == 1

    def test_skipped_item_can_be_retried_after_transcript(self, db, settings, podcast_source):
        item_id = _add(db, podcast_source, body="Short notes.")
        machine = _machine(db, settings, FakeLLM())
        machine.summarize(item_id)
        assert db.get_item(item_id).processing_status == ProcessingStatus.SKIPPED

        item = db.get_item(item_id)
        db.attach_transcript(item_id, "A long conversation about tides. " * 60, item.content_hash)

        assert machine.retry(item_id).success


class TestBacklog:
    """Tests for the backlog sweep."""

    def test_sweeps_pending_items(self, db, settings, source):
        ids = [_add(db, source, key) for key in ("a", "b", "c")]

        report = _machine(db, settings, FakeLLM()).process_pending(limit=10)

        assert report.attempted == 3
        assert report.completed == 3
        assert all(db.get_item(i).processing_status == ProcessingStatus.COMPLETED for i in ids)

    def test_failed_items_wait_for_backoff(self, db, settings, source):
        item_id = _add(db, source)
        _fail(db, item_id)

        report = _machine(db, settings, FakeLLM()).process_pending()

        assert report.attempted == 0
        assert report.deferred == 1
        assert db.get_item(item_id).processing_status == ProcessingStatus.FAILED

    def test_backoff_window_follows_schedule(self, db, settings, source):
        item_id = _add(db, source)
        _fail(db, item_id)
        machine = _machine(db, settings, FakeLLM())
        item = db.get_item(item_id)
        later = item.last_retry_at + timedelta(minutes=settings.retry_backoff_minutes[0])

        assert machine._backoff_elapsed(item, later)
        assert not machine._backoff_elapsed(item, later - timedelta(seconds=1))

    def test_recover_stale_releases_expired_leases(self, db, settings, source):
        item_id = _add(db, source)
        db.claim_item(
            item_id,
            [ProcessingStatus.PENDING],
            "crashed-attempt",
            now=datetime.now(UTC) - timedelta(seconds=settings.processing_lease_seconds + 60),
        )

        released = _machine(db, settings, FakeLLM()).recover_stale()

        assert released == [item_id]
        assert db.get_item(item_id).processing_status == ProcessingStatus.FAILED


class TestCache:
    """Tests for reuse of billed summarizer output."""

    def test_cached_result_survives_storage_failure(self, db, settings, source, monkeypatch):
        item_id = _add(db, source)
        cache = CacheStore(settings.db_path)
        client = FakeLLM()
        machine = _machine(db, settings, client, cache=cache)

        original = db.complete_item

        def broken(*args, **kwargs):
            raise StorageError("disk I/O error")

        monkeypatch.setattr(db, "complete_item", broken)
        first = machine.summarize(item_id)
        assert first.code == "storage_error"
        assert first.retryable

        monkeypatch.setattr(db, "complete_item", original)
        second = machine.summarize(item_id)

        assert second.success
        assert len(client.prompts) == 1
        assert cache.stats()["total_entries"] == 0
