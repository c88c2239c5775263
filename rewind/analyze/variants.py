"""
Summarization variants.

An item is resolved once into either an ArticleLike or a PodcastLike
variant; everything downstream dispatches on the variant type instead of
re-inspecting source kind and content type.
"""

from dataclasses import dataclass

from rewind.models import ContentItem, ContentSource, ContentType, SourceKind


@dataclass(frozen=True)
class ArticleLike:
    item_id: str
    title: str
    text: str
    word_count: int


@dataclass(frozen=True)
class PodcastLike:
    item_id: str
    title: str
    text: str
    word_count: int
    duration_seconds: int | None
    from_transcript: bool


Variant = ArticleLike | PodcastLike


def select_text(item: ContentItem) -> tuple[str, bool]:
    """Return (text, from_transcript). A transcript always wins over body text."""
    if item.transcript and item.transcript.strip():
        return item.transcript.strip(), True
    return (item.extracted_text or "").strip(), False


def resolve_variant(item: ContentItem, source: ContentSource | None) -> Variant:
    text, from_transcript = select_text(item)
    word_count = len(text.split())

    podcast_style = (source is not None and source.kind == SourceKind.PODCAST) or (
        item.content_type == ContentType.YOUTUBE_VIDEO and from_transcript
    )
    if podcast_style:
        return PodcastLike(
            item_id=item.id,
            title=item.title,
            text=text,
            word_count=word_count,
            duration_seconds=item.duration_seconds,
            from_transcript=from_transcript,
        )
    return ArticleLike(item_id=item.id, title=item.title, text=text, word_count=word_count)
