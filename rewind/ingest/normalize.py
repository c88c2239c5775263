"""
Normalization and deduplication of fetched records.

Maps a RawRecord onto a ContentItem and decides whether it is new, an
update of an item already stored under the same natural key, or an
unchanged duplicate.
"""

import hashlib
import json
import re
from typing import NamedTuple
from uuid import uuid4

from rewind.errors import ParseError
from rewind.ingest.parser import count_words, extract_text_content
from rewind.logging_config import get_logger
from rewind.models import (
    Classification,
    ContentItem,
    ContentSource,
    ContentType,
    RawRecord,
    SourceKind,
)

logger = get_logger("normalize")

AUDIO_EXTENSIONS = re.compile(r"\.(mp3|m4a|wav|ogg|aac|opus)(\?.*)?$", re.IGNORECASE)
YOUTUBE_HOSTS = re.compile(r"^https?://(www\.|m\.)?(youtube\.com|youtu\.be)/", re.IGNORECASE)


class Normalized(NamedTuple):
    """Classifier verdict plus the item to persist (unchanged item when skipped)."""

    outcome: Classification
    item: ContentItem


def natural_key_for(raw: RawRecord) -> str:
    """Return the record's dedup key, falling back to a title/date digest."""
    if raw.natural_key and raw.natural_key.strip():
        return raw.natural_key.strip()
    if raw.link and raw.link.strip():
        return raw.link.strip()

    if not raw.title and raw.published is None:
        raise ParseError("Record has no guid, link, title or publish date")

    published = raw.published.isoformat() if raw.published else ""
    digest = hashlib.sha256(f"{raw.title}\n{published}".encode()).hexdigest()
    logger.warning(f"Record '{raw.title[:60]}' has no guid or link; using fallback key {digest[:12]}")
    return f"sha256:{digest}"


def detect_content_type(source: ContentSource, raw: RawRecord) -> ContentType:
    if source.kind == SourceKind.PODCAST or _has_audio(raw):
        return ContentType.PODCAST_EPISODE
    if raw.link and YOUTUBE_HOSTS.match(raw.link):
        return ContentType.YOUTUBE_VIDEO
    if source.kind == SourceKind.NEWSLETTER:
        return ContentType.NEWSLETTER
    return ContentType.ARTICLE


def _has_audio(raw: RawRecord) -> bool:
    if not raw.audio_url:
        return False
    if raw.audio_type and raw.audio_type.startswith("audio/"):
        return True
    return bool(AUDIO_EXTENSIONS.search(raw.audio_url))


def parse_duration(value: str | None) -> int | None:
    """Parse an itunes:duration value: seconds, MM:SS or HH:MM:SS."""
    if not value:
        return None
    value = value.strip()
    try:
        if ":" in value:
            parts = [int(part) for part in value.split(":")]
            if len(parts) == 3:
                return parts[0] * 3600 + parts[1] * 60 + parts[2]
            if len(parts) == 2:
                return parts[0] * 60 + parts[1]
            return None
        return int(float(value))
    except ValueError:
        return None


def content_hash(item: ContentItem) -> str:
    """Digest of the fields whose change makes a record an update."""
    tracked = {
        "title": item.title,
        "text": item.extracted_text,
        "transcript": item.transcript,
        "audio_url": item.audio_url,
        "duration": item.duration_seconds,
        "image": item.image_url,
    }
    return hashlib.sha256(json.dumps(tracked, sort_keys=True).encode()).hexdigest()


def build_item(source: ContentSource, raw: RawRecord) -> ContentItem:
    """Normalize a raw record into a fresh (pending) ContentItem."""
    raw_content = raw.content_html or raw.summary or ""
    try:
        extracted = extract_text_content(raw_content)
    except (ValueError, TypeError) as exc:
        raise ParseError(f"Could not extract text from '{raw.title[:60]}': {exc}") from exc

    content_type = detect_content_type(source, raw)
    item = ContentItem(
        id=uuid4().hex,
        source_id=source.id,
        natural_key=natural_key_for(raw),
        content_type=content_type,
        title=raw.title or "Untitled",
        url=raw.link,
        author=raw.author,
        image_url=raw.image_url,
        published_at=raw.published,
        raw_content=raw_content,
        extracted_text=extracted,
        transcript=raw.transcript or None,
        word_count=count_words(extracted),
        duration_seconds=(
            parse_duration(raw.itunes_duration)
            if content_type == ContentType.PODCAST_EPISODE
            else None
        ),
        audio_url=raw.audio_url if _has_audio(raw) else None,
        categories=raw.categories,
    )
    item.content_hash = content_hash(item)
    return item


def classify(
    source: ContentSource,
    raw: RawRecord,
    existing_by_key: dict[str, ContentItem],
) -> Normalized:
    """
    Classify a raw record against the items already known for the source.

    Args:
        source: Source the record was fetched from
        raw: The fetched record
        existing_by_key: Known items of this source by natural key. Callers
            keep this map current while walking a fetch so that duplicate
            keys inside one fetch collapse into one item.

    Returns:
        Normalized(outcome, item). For `updated`, the item keeps the stored
        id, processing status and retry bookkeeping. For `skipped`, the
        stored item is returned unchanged.

    Raises:
        ParseError: the record cannot be normalized at all
    """
    candidate = build_item(source, raw)
    existing = existing_by_key.get(candidate.natural_key)

    if existing is None:
        return Normalized(Classification.NEW, candidate)

    if existing.content_hash == candidate.content_hash:
        return Normalized(Classification.SKIPPED, existing)

    merged = candidate.model_copy(
        update={
            "id": existing.id,
            "processing_status": existing.processing_status,
            "retry_count": existing.retry_count,
            "last_error": existing.last_error,
            "last_retry_at": existing.last_retry_at,
            "processing_started_at": existing.processing_started_at,
            "attempt_id": existing.attempt_id,
            # Transcripts attached after ingest survive feed refreshes
            "transcript": candidate.transcript or existing.transcript,
        }
    )
    merged.content_hash = content_hash(merged)
    if merged.content_hash == existing.content_hash:
        return Normalized(Classification.SKIPPED, existing)
    return Normalized(Classification.UPDATED, merged)
