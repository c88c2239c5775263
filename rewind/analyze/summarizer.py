"""Content summarization via provider-agnostic LLM client."""

from __future__ import annotations

import re
from dataclasses import dataclass
from time import perf_counter
from typing import Literal

import pydantic
from pydantic import BaseModel, Field

from rewind.errors import SummarizerError, TransportError
from rewind.llm import LLMClient, LLMError, LLMResponse, estimate_cost
from rewind.logging_config import get_logger

from .prompts import (
    ARTICLE_SUMMARY_USER,
    CHUNK_NOTES_USER,
    COMBINE_SUMMARY_USER,
    PODCAST_SUMMARY_USER,
    SUMMARY_SYSTEM,
)
from .variants import PodcastLike, Variant

logger = get_logger("summarizer")

Style = Literal["article", "podcast"]


# Response schemas keep every field required; some providers reject
# schema defaults.
class TakeawayOut(BaseModel):
    takeaway: str
    context: str
    actionable: str = Field(description="Concrete action, or empty string")
    confidence: float = Field(description="0 to 1")
    source_quote: str = Field(description="Supporting quote, or empty string")
    timestamp: str = Field(description="Approximate timestamp, or empty string")


class RelatedIdeaOut(BaseModel):
    idea: str
    connection: str
    category: str = Field(description="extension, counterpoint, application or question")


class TriviaOut(BaseModel):
    fact: str
    relevance: str


class SpeakerOut(BaseModel):
    name: str
    role: str
    key_contributions: list[str]


class ArticleSummaryResponse(BaseModel):
    """Structured response schema for article summaries."""

    headline: str
    tldr: str
    full_summary: str
    key_points: list[str]
    key_takeaways: list[TakeawayOut]
    related_ideas: list[RelatedIdeaOut]
    allied_trivia: list[TriviaOut]


class PodcastSummaryResponse(ArticleSummaryResponse):
    """Article schema plus speaker attribution."""

    speakers: list[SpeakerOut]


class ChunkNotesResponse(BaseModel):
    main_points: list[str]
    insights: list[str]
    key_terms: list[str]
    quotes: list[str]
    questions: list[str]


@dataclass
class SummarizerResult:
    """Validated summary fields plus usage metadata for one summarization."""

    output: dict
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    duration_ms: int = 0
    strategy: str = "single"
    chunks: int = 1


def split_into_chunks(text: str, max_chars: int) -> list[str]:
    """Split on paragraph boundaries, then sentences, into pieces <= max_chars."""
    if len(text) <= max_chars:
        return [text]

    pieces: list[str] = []
    for paragraph in re.split(r"\n{2,}", text):
        if len(paragraph) <= max_chars:
            pieces.append(paragraph)
            continue
        sentences = re.split(r"(?<=[.!?])\s+", paragraph)
        for sentence in sentences:
            while len(sentence) > max_chars:
                pieces.append(sentence[:max_chars])
                sentence = sentence[max_chars:]
            pieces.append(sentence)

    chunks: list[str] = []
    current = ""
    for piece in pieces:
        if not piece:
            continue
        candidate = f"{current}\n\n{piece}" if current else piece
        if len(candidate) > max_chars and current:
            chunks.append(current)
            current = piece
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def _format_duration(seconds: int | None) -> str:
    if not seconds:
        return "Unknown"
    return f"{seconds // 60} minutes"


class Summarizer:
    """Produces structured summaries with an LLM provider client."""

    def __init__(self, client: LLMClient, max_chunk_chars: int = 24000):
        self.client = client
        self.max_chunk_chars = max_chunk_chars

    @property
    def model(self) -> str:
        return getattr(self.client, "model", "unknown")

    def summarize_variant(self, variant: Variant) -> SummarizerResult:
        if isinstance(variant, PodcastLike):
            return self.summarize(
                variant.text,
                title=variant.title,
                style="podcast",
                duration_seconds=variant.duration_seconds,
            )
        return self.summarize(variant.text, title=variant.title, style="article")

    def summarize(
        self,
        text: str,
        *,
        title: str,
        style: Style = "article",
        duration_seconds: int | None = None,
    ) -> SummarizerResult:
        """
        Summarize `text`, chunking first when it exceeds the chunk size.

        Raises:
            TransportError: transient provider failure (retryable)
            SummarizerError: the provider rejected the request or returned
                output that does not match the schema
        """
        started = perf_counter()
        schema = PodcastSummaryResponse if style == "podcast" else ArticleSummaryResponse
        chunks = split_into_chunks(text, self.max_chunk_chars)
        input_tokens = 0
        output_tokens = 0

        if len(chunks) == 1:
            logger.info(f"Summarizing ({style}): {title[:50]}")
            template = PODCAST_SUMMARY_USER if style == "podcast" else ARTICLE_SUMMARY_USER
            prompt = template.format(
                title=title,
                content=text,
                duration=_format_duration(duration_seconds),
            )
            strategy = "single"
        else:
            logger.info(f"Summarizing ({style}) in {len(chunks)} chunks: {title[:50]}")
            notes: list[str] = []
            for index, chunk in enumerate(chunks, start=1):
                position_note = (
                    "This is the opening section."
                    if index == 1
                    else "This is the final section." if index == len(chunks) else ""
                )
                response = self._generate(
                    CHUNK_NOTES_USER.format(
                        index=index,
                        total=len(chunks),
                        title=title,
                        position_note=position_note,
                        content=chunk,
                    ),
                    ChunkNotesResponse,
                )
                input_tokens += response.input_tokens
                output_tokens += response.output_tokens
                notes.append(f"Section {index}:\n{response.raw_text or response.parsed}")

            prompt = COMBINE_SUMMARY_USER.format(
                title=title,
                style="podcast episode" if style == "podcast" else "article",
                notes="\n\n".join(notes),
                speaker_note=", including speakers" if style == "podcast" else "",
            )
            strategy = "chunked"

        response = self._generate(prompt, schema)
        input_tokens += response.input_tokens
        output_tokens += response.output_tokens

        try:
            output = schema.model_validate(response.parsed)
        except pydantic.ValidationError as exc:
            raise SummarizerError(f"Summary did not match schema: {exc.error_count()} error(s)") from exc

        duration_ms = int((perf_counter() - started) * 1000)
        logger.debug(f"Summary generated ({input_tokens + output_tokens} tokens, {duration_ms}ms)")

        return SummarizerResult(
            output=output.model_dump(),
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=estimate_cost(self.model, input_tokens, output_tokens),
            duration_ms=duration_ms,
            strategy=strategy,
            chunks=len(chunks),
        )

    def _generate(self, prompt: str, schema: type[BaseModel]) -> LLMResponse:
        try:
            return self.client.generate(prompt=prompt, system=SUMMARY_SYSTEM, response_schema=schema)
        except LLMError as exc:
            if exc.retryable:
                raise TransportError(str(exc)) from exc
            raise SummarizerError(str(exc)) from exc
