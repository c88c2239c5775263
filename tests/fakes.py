"""Test doubles and record builders shared across test modules."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from rewind.ingest.feeds import FetchResult
from rewind.llm.base import LLMError, LLMResponse
from rewind.models import ContentSource, RawRecord

BODY = "Distributed systems fail in partial and surprising ways. " * 30

ARTICLE_RESPONSE = {
    "headline": "Why partial failures dominate distributed systems",
    "tldr": "Most outages come from components that are slow or half-working, not from clean crashes, "
    "so designs should assume degraded peers.",
    "full_summary": "The article argues that " + "partial failure is the normal state of a large system. " * 5,
    "key_points": ["Partial failure is normal", "Timeouts are a design decision"],
    "key_takeaways": [
        {
            "takeaway": "Budget every remote call with a timeout",
            "context": "Slow peers cascade",
            "actionable": "Audit client timeouts",
            "confidence": 0.9,
            "source_quote": "",
            "timestamp": "",
        },
        {
            "takeaway": "Prefer idempotent writes",
            "context": "Retries are inevitable",
            "actionable": "",
            "confidence": 0.8,
            "source_quote": "",
            "timestamp": "",
        },
    ],
    "related_ideas": [
        {"idea": "Circuit breakers", "connection": "Contain slow dependencies", "category": "extension"}
    ],
    "allied_trivia": [{"fact": "The fallacies of distributed computing date to 1994", "relevance": "Context"}],
}

PODCAST_RESPONSE = {
    **ARTICLE_RESPONSE,
    "speakers": [{"name": "Host", "role": "host", "key_contributions": ["Framed the topic"]}],
}


class FakeLLM:
    """LLMClient stand-in that records prompts and returns canned output."""

    model = "fake-model"

    def __init__(self, error: Exception | None = None, on_call: Callable[[], None] | None = None):
        self.error = error
        self.on_call = on_call
        self.prompts: list[str] = []

    def generate(self, prompt, system, response_schema) -> LLMResponse:
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        parsed = PODCAST_RESPONSE if "speakers" in response_schema.model_fields else ARTICLE_RESPONSE
        return LLMResponse(parsed=dict(parsed), raw_text="{}", input_tokens=100, output_tokens=50)


def transient_error() -> LLMError:
    return LLMError("503 Service Unavailable", retryable=True)


def make_record(
    key: str,
    title: str | None = None,
    body: str = BODY,
    published: datetime | None = None,
    **extra,
) -> RawRecord:
    return RawRecord(
        natural_key=key,
        title=title or f"Post {key}",
        link=f"https://example.com/{key}",
        published=published or datetime(2026, 1, 1, tzinfo=UTC),
        content_html=f"<p>{body}</p>",
        **extra,
    )


class StaticFetcher:
    """Fetcher stand-in returning queued results per feed URL."""

    def __init__(
        self,
        responses: dict[str, list[RawRecord] | Exception] | None = None,
        raise_errors: bool = False,
    ):
        self.responses = responses or {}
        self.raise_errors = raise_errors
        self.calls: list[str] = []

    def __call__(self, source: ContentSource, timeout: int = 30, max_entries: int = 50) -> FetchResult:
        self.calls.append(source.feed_url)
        response = self.responses.get(source.feed_url, [])
        if isinstance(response, Exception):
            if self.raise_errors:
                raise response
            code = getattr(response, "code", "transport_error")
            return FetchResult(
                source_id=source.id,
                records=[],
                success=False,
                error=str(response),
                error_code=code,
                retryable=getattr(response, "retryable", True),
            )
        return FetchResult(source_id=source.id, records=list(response)[:max_entries], success=True)


