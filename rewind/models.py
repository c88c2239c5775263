"""
Core data models for the content pipeline.

Using Pydantic for validation and serialization.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    """Kind of subscribable origin."""

    RSS = "rss"
    PODCAST = "podcast"
    NEWSLETTER = "newsletter"


class ContentType(str, Enum):
    """Kind of fetched unit."""

    ARTICLE = "article"
    PODCAST_EPISODE = "podcast_episode"
    NEWSLETTER = "newsletter"
    YOUTUBE_VIDEO = "youtube_video"


class ProcessingStatus(str, Enum):
    """Summarization state of a content item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    PERMANENTLY_FAILED = "permanently_failed"
    SKIPPED = "skipped"


RETRYABLE_STATUSES = frozenset(
    {
        ProcessingStatus.FAILED,
        ProcessingStatus.PERMANENTLY_FAILED,
        ProcessingStatus.SKIPPED,
    }
)


class Classification(str, Enum):
    """Normalizer verdict for a raw record."""

    NEW = "new"
    UPDATED = "updated"
    SKIPPED = "skipped"


class ContentSource(BaseModel):
    """A feed, podcast or newsletter that items are fetched from."""

    id: str = Field(..., description="Stable identifier")
    kind: SourceKind = Field(default=SourceKind.RSS)
    title: str = Field(..., description="Display name")
    feed_url: str | None = Field(default=None, description="Feed or episode list address")
    is_active: bool = Field(default=True)
    auto_summarize: bool = Field(default=True, description="Enqueue new items for summarization")
    last_fetched_at: datetime | None = None
    last_successful_fetch_at: datetime | None = None
    last_published_at: datetime | None = Field(
        default=None, description="Checkpoint: latest published time seen"
    )
    fetch_error_count: int = Field(default=0, description="Consecutive fetch failures")
    last_error_message: str | None = None
    created_at: datetime | None = None


class RawRecord(BaseModel):
    """One fetched entry before normalization."""

    natural_key: str | None = Field(default=None, description="guid, entry id or link")
    title: str = Field(default="")
    link: str | None = None
    author: str | None = None
    published: datetime | None = None
    content_html: str = Field(default="", description="Richest HTML body in the entry")
    summary: str = Field(default="")
    transcript: str | None = None
    audio_url: str | None = None
    audio_type: str | None = None
    audio_length: int | None = None
    itunes_duration: str | None = None
    image_url: str | None = None
    categories: list[str] = Field(default_factory=list)


class ContentItem(BaseModel):
    """One article, episode or issue."""

    id: str
    source_id: str
    natural_key: str = Field(..., description="Source-scoped dedup key")
    content_type: ContentType = Field(default=ContentType.ARTICLE)
    title: str = Field(default="Untitled")
    url: str | None = None
    author: str | None = None
    image_url: str | None = None
    published_at: datetime | None = None
    raw_content: str = Field(default="")
    extracted_text: str = Field(default="")
    transcript: str | None = None
    content_hash: str = Field(default="")
    word_count: int = Field(default=0)
    duration_seconds: int | None = None
    audio_url: str | None = None
    categories: list[str] = Field(default_factory=list)

    processing_status: ProcessingStatus = Field(default=ProcessingStatus.PENDING)
    retry_count: int = Field(default=0)
    last_error: str | None = None
    last_retry_at: datetime | None = None
    processing_started_at: datetime | None = None
    attempt_id: str | None = None


class KeyTakeaway(BaseModel):
    takeaway: str
    context: str = ""
    actionable: str | None = None
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    source_quote: str | None = None
    timestamp: str | None = None


class RelatedIdea(BaseModel):
    idea: str
    connection: str = ""
    category: str = Field(default="extension", description="extension|counterpoint|application|question")


class TriviaItem(BaseModel):
    fact: str
    relevance: str = ""


class Speaker(BaseModel):
    name: str
    role: str | None = None
    key_contributions: list[str] = Field(default_factory=list)


class Summary(BaseModel):
    """Persisted summary of one content item."""

    id: str
    content_id: str
    headline: str = ""
    tldr: str = ""
    full_summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    key_takeaways: list[KeyTakeaway] = Field(default_factory=list)
    related_ideas: list[RelatedIdea] = Field(default_factory=list)
    allied_trivia: list[TriviaItem] = Field(default_factory=list)
    speakers: list[Speaker] = Field(default_factory=list)
    model_used: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    processing_time_ms: int = 0
    quality_score: int = Field(default=0, ge=0, le=100)
    created_at: datetime | None = None


class ItemStatus(BaseModel):
    """Externally visible processing state of an item."""

    item_id: str
    processing_status: ProcessingStatus
    retry_count: int
    last_error: str | None = None
    has_summary: bool = False


class SourceResult(BaseModel):
    """Outcome of syncing one source."""

    source_id: str
    source_name: str = "Unknown"
    success: bool = False
    items_found: int = 0
    items_added: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False
    record_errors: list[str] = Field(default_factory=list)
    added_item_ids: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0


class SyncRun(BaseModel):
    """Aggregate result of one orchestration pass."""

    run_id: str
    started_at: datetime
    results: list[SourceResult] = Field(default_factory=list)
    sources_attempted: int = 0
    sources_succeeded: int = 0
    sources_failed: int = 0
    items_added: int = 0
    items_updated: int = 0
    duration_seconds: float = 0.0

    @classmethod
    def from_results(
        cls,
        run_id: str,
        started_at: datetime,
        results: list[SourceResult],
        duration_seconds: float,
    ) -> "SyncRun":
        return cls(
            run_id=run_id,
            started_at=started_at,
            results=results,
            sources_attempted=len(results),
            sources_succeeded=sum(1 for r in results if r.success),
            sources_failed=sum(1 for r in results if not r.success),
            items_added=sum(r.items_added for r in results),
            items_updated=sum(r.items_updated for r in results),
            duration_seconds=duration_seconds,
        )

    def summary_dict(self) -> dict[str, Any]:
        """Global counts without per-source detail."""
        return {
            "run_id": self.run_id,
            "sources": {
                "attempted": self.sources_attempted,
                "succeeded": self.sources_succeeded,
                "failed": self.sources_failed,
            },
            "items": {"added": self.items_added, "updated": self.items_updated},
            "duration_seconds": round(self.duration_seconds, 3),
        }
