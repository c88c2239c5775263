"""Tests for the Summarizer, chunking and quality scoring."""

from unittest.mock import Mock

import pytest

from rewind.analyze.quality import quality_score
from rewind.analyze.summarizer import (
    ArticleSummaryResponse,
    ChunkNotesResponse,
    PodcastSummaryResponse,
    Summarizer,
    split_into_chunks,
)
from rewind.analyze.variants import ArticleLike, PodcastLike, resolve_variant
from rewind.errors import SummarizerError, TransportError
from rewind.llm.base import LLMError, LLMResponse
from rewind.models import (
    ContentItem,
    ContentSource,
    ContentType,
    KeyTakeaway,
    RelatedIdea,
    SourceKind,
    Summary,
    TriviaItem,
)

from fakes import ARTICLE_RESPONSE, BODY, FakeLLM

NOTES = {"main_points": ["p"], "insights": ["i"], "key_terms": [], "quotes": [], "questions": []}


class TestQualityScore:
    def _summary(self, **fields) -> Summary:
        return Summary(id="s", content_id="c", **fields)

    def test_reference_summary_scores_80(self):
        summary = self._summary(
            headline="h" * 60,
            tldr="t" * 120,
            full_summary="f" * 250,
            key_takeaways=[KeyTakeaway(takeaway="a"), KeyTakeaway(takeaway="b")],
            related_ideas=[RelatedIdea(idea="r")],
            allied_trivia=[TriviaItem(fact="x")],
        )
        assert quality_score(summary) == 80

    def test_empty_summary_scores_zero(self):
        assert quality_score(self._summary()) == 0

    def test_out_of_range_lengths_get_partial_credit(self):
        summary = self._summary(headline="short", tldr="brief", full_summary="f" * 150)
        assert quality_score(summary) == 8 + 8 + 12

    def test_list_credit_is_capped(self):
        summary = self._summary(
            headline="h" * 60,
            tldr="t" * 120,
            full_summary="f" * 250,
            key_takeaways=[KeyTakeaway(takeaway=str(i)) for i in range(6)],
            related_ideas=[RelatedIdea(idea=str(i)) for i in range(4)],
            allied_trivia=[TriviaItem(fact=str(i)) for i in range(4)],
        )
        assert quality_score(summary) == 100


class TestChunking:
    def test_short_text_is_one_chunk(self):
        assert split_into_chunks("hello world", 100) == ["hello world"]

    def test_splits_on_paragraphs(self):
        text = "\n\n".join(["a" * 40, "b" * 40, "c" * 40])
        chunks = split_into_chunks(text, 90)
        assert chunks == ["a" * 40 + "\n\n" + "b" * 40, "c" * 40]

    def test_long_paragraph_splits_on_sentences(self):
        text = " ".join(["This sentence is filler text."] * 20)
        chunks = split_into_chunks(text, 100)
        assert len(chunks) > 1
        assert all(len(chunk) <= 100 for chunk in chunks)


class TestVariants:
    def _item(self, **fields) -> ContentItem:
        return ContentItem(id="i", source_id="s", natural_key="k", title="T", **fields)

    def test_article_source_gives_article_variant(self):
        source = ContentSource(id="s", title="Blog")
        variant = resolve_variant(self._item(extracted_text="body text"), source)
        assert isinstance(variant, ArticleLike)
        assert variant.word_count == 2

    def test_podcast_source_gives_podcast_variant(self):
        source = ContentSource(id="s", title="Show", kind=SourceKind.PODCAST)
        variant = resolve_variant(
            self._item(extracted_text="notes", transcript="spoken words here", duration_seconds=60),
            source,
        )
        assert isinstance(variant, PodcastLike)
        assert variant.text == "spoken words here"
        assert variant.from_transcript

    def test_video_with_transcript_is_podcast_style(self):
        source = ContentSource(id="s", title="Channel")
        item = self._item(content_type=ContentType.YOUTUBE_VIDEO, transcript="talk transcript")
        assert isinstance(resolve_variant(item, source), PodcastLike)

    def test_video_without_transcript_is_article_style(self):
        source = ContentSource(id="s", title="Channel")
        item = self._item(content_type=ContentType.YOUTUBE_VIDEO, extracted_text="description")
        assert isinstance(resolve_variant(item, source), ArticleLike)


class TestSummarizer:
    def test_single_pass_article(self):
        client = FakeLLM()
        result = Summarizer(client).summarize(BODY, title="Partial failure")

        assert result.strategy == "single"
        assert result.output["headline"] == ARTICLE_RESPONSE["headline"]
        assert result.input_tokens == 100
        assert result.output_tokens == 50
        assert result.model == "fake-model"
        assert "Partial failure" in client.prompts[0]

    def test_podcast_style_uses_podcast_schema(self):
        client = Mock()
        client.model = "m"
        client.generate.return_value = FakeLLM().generate("", "", PodcastSummaryResponse)

        Summarizer(client).summarize_variant(
            PodcastLike("i", "Episode", BODY, 240, duration_seconds=1800, from_transcript=True)
        )

        _, kwargs = client.generate.call_args
        assert kwargs["response_schema"] is PodcastSummaryResponse
        assert "30 minutes" in kwargs["prompt"]

    def test_long_text_is_chunked_then_combined(self):
        client = Mock()
        client.model = "m"
        client.generate.side_effect = [
            LLMResponse(parsed=NOTES, raw_text='{"main_points": ["p"]}', input_tokens=10, output_tokens=5),
            LLMResponse(parsed=NOTES, raw_text='{"main_points": ["q"]}', input_tokens=10, output_tokens=5),
            LLMResponse(parsed=ARTICLE_RESPONSE, raw_text="{}", input_tokens=20, output_tokens=10),
        ]
        text = "\n\n".join(["x" * 900, "y" * 900])

        result = Summarizer(client, max_chunk_chars=1000).summarize(text, title="Long read")

        assert result.strategy == "chunked"
        assert result.chunks == 2
        assert result.input_tokens == 40
        schemas = [call.kwargs["response_schema"] for call in client.generate.call_args_list]
        assert schemas == [ChunkNotesResponse, ChunkNotesResponse, ArticleSummaryResponse]
        assert "Section 2" in client.generate.call_args_list[2].kwargs["prompt"]

    def test_schema_mismatch_is_summarizer_error(self):
        client = Mock()
        client.model = "m"
        client.generate.return_value = LLMResponse(
            parsed={"headline": "only"}, raw_text="{}", input_tokens=1, output_tokens=1
        )
        with pytest.raises(SummarizerError):
            Summarizer(client).summarize(BODY, title="T")

    def test_retryable_provider_error_is_transport_error(self):
        with pytest.raises(TransportError):
            Summarizer(FakeLLM(error=LLMError("rate limited", retryable=True))).summarize(BODY, title="T")

    def test_permanent_provider_error_is_summarizer_error(self):
        with pytest.raises(SummarizerError):
            Summarizer(FakeLLM(error=LLMError("bad request"))).summarize(BODY, title="T")
