"""Tests for the assembled pipeline: registration, transcripts and full passes."""

import pytest

from rewind import pipeline as pipeline_module
from rewind.errors import NotFoundError
from rewind.ingest.feeds import FetchResult
from rewind.models import ProcessingStatus, SourceKind
from rewind.pipeline import Pipeline

from fakes import FakeLLM, StaticFetcher, make_record

FEED = "https://example.com/feed.xml"


@pytest.fixture
def pipeline(settings, db):
    built = Pipeline(settings, db=db, client=FakeLLM())
    yield built
    built.close()


class TestRegisterSource:
    def test_new_and_existing_share_one_shape(self, pipeline):
        first = pipeline.register_source(FEED, title="Example Blog")
        again = pipeline.register_source(FEED, title="Renamed")

        assert first.success and again.success
        assert first.created is True
        assert again.created is False
        assert again.source.id == first.source.id
        assert again.source.title == "Example Blog"

    def test_title_discovered_from_feed(self, pipeline, monkeypatch):
        def fake_fetch(source, timeout=30, max_entries=50):
            return FetchResult(source_id=source.id, records=[], success=True, feed_title="Discovered")

        monkeypatch.setattr(pipeline_module, "fetch_source", fake_fetch)

        result = pipeline.register_source("https://example.org/rss", kind=SourceKind.PODCAST)

        assert result.source.title == "Discovered"
        assert result.source.kind == SourceKind.PODCAST

    def test_title_falls_back_to_host(self, pipeline, monkeypatch):
        def failing_fetch(source, timeout=30, max_entries=50):
            return FetchResult(source_id=source.id, records=[], success=False, error="HTTP 500")

        monkeypatch.setattr(pipeline_module, "fetch_source", failing_fetch)

        assert pipeline.register_source("https://news.example.net/feed").source.title == "news.example.net"


class TestRunPass:
    def test_new_items_are_summarized(self, pipeline, source):
        pipeline.orchestrator.fetcher = StaticFetcher({FEED: [make_record("a"), make_record("b")]})

        report = pipeline.run_pass()

        item_ids = report.run.results[0].added_item_ids
        assert report.run.items_added == 2
        assert sorted(report.queued.completed) == sorted(item_ids)
        assert report.queued.failures == []
        assert report.backlog.attempted == 0
        assert all(pipeline.get_status(i).processing_status == ProcessingStatus.COMPLETED for i in item_ids)

    def test_second_pass_is_idempotent(self, pipeline, source):
        fetcher = StaticFetcher({FEED: [make_record("a")]})
        pipeline.orchestrator.fetcher = fetcher
        pipeline.run_pass()

        report = pipeline.run_pass()

        assert report.run.items_added == 0
        assert report.run.items_updated == 0
        assert report.queued.completed == []
        assert len(fetcher.calls) == 2

    def test_without_summaries(self, settings, db, source):
        with Pipeline(settings, db=db, summaries=False) as quiet:
            quiet.orchestrator.fetcher = StaticFetcher({FEED: [make_record("a")]})
            report = quiet.run_pass()

            item_id = report.run.results[0].added_item_ids[0]
            assert report.queued is None
            assert quiet.get_status(item_id).processing_status == ProcessingStatus.PENDING
            with pytest.raises(RuntimeError):
                quiet.retry(item_id)
            with pytest.raises(NotFoundError):
                quiet.get_status("missing")


class TestAttachTranscript:
    def test_attach_then_resync_is_not_an_update(self, settings, db, podcast_source):
        feed = podcast_source.feed_url
        with Pipeline(settings, db=db, summaries=False) as quiet:
            quiet.orchestrator.fetcher = StaticFetcher({feed: [make_record("ep", body="Short notes.")]})
            item_id = quiet.sync_one(podcast_source.id).added_item_ids[0]

            result = quiet.attach_transcript(item_id, "  The full conversation.  ")
            assert result.success
            assert db.get_item(item_id).transcript == "The full conversation."

            again = quiet.sync_one(podcast_source.id)
            assert again.items_updated == 0
            assert again.items_skipped == 1
            assert db.get_item(item_id).transcript == "The full conversation."

    def test_rejects_unknown_and_empty(self, pipeline, source):
        pipeline.orchestrator.fetcher = StaticFetcher({FEED: [make_record("a")]})
        item_id = pipeline.sync_one(source.id).added_item_ids[0]

        assert pipeline.attach_transcript("missing", "text").code == "not_found"
        assert pipeline.attach_transcript(item_id, "   ").code == "validation_error"
