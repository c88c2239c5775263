"""
Feed fetching with error classification and a total-time ceiling.

`fetch_source` never raises: every failure comes back as an unsuccessful
FetchResult carrying an error code and a retryable flag, so one bad source
cannot interrupt a sync run.
"""

import calendar
from datetime import datetime, timezone
from email.utils import format_datetime
from time import perf_counter
from typing import Any, NamedTuple

import feedparser
import httpx
from dateutil.parser import ParserError
from dateutil.parser import parse as parse_date

from rewind.errors import ParseError, PipelineError, TransportError, ValidationError
from rewind.logging_config import get_logger
from rewind.models import ContentSource, RawRecord

logger = get_logger("feeds")

FEED_AGENT_HEADERS = {
    "User-Agent": "Rewind/1.0 (+feed reader)",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml;q=0.9, */*;q=0.8",
}

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "application/rss+xml,application/atom+xml,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

# Some CDNs answer simple bot user agents with false 403/404
BOT_FILTER_RETRY_STATUS_CODES = {403, 404}
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class FetchResult(NamedTuple):
    """Result of fetching one source."""

    source_id: str
    records: list[RawRecord]
    success: bool
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False
    status_code: int | None = None
    not_modified: bool = False
    attempts: int = 1
    response_time_ms: float | None = None
    entry_count: int = 0
    feed_title: str | None = None


class DeadlineExceeded(httpx.TimeoutException):
    """Whole-fetch ceiling hit while the body was still streaming."""


def fetch_source(
    source: ContentSource,
    timeout: int = 30,
    max_entries: int = 50,
    client: httpx.Client | None = None,
) -> FetchResult:
    """
    Fetch and parse a source's feed into raw records.

    Args:
        source: Source to fetch; its last successful fetch time is sent
            as If-Modified-Since
        timeout: Ceiling in seconds for the whole fetch, body included
        max_entries: Maximum records to return, newest first as the feed orders them
        client: Optional shared httpx client (tests pass one with a mock transport)

    Returns:
        FetchResult with records or error information
    """
    if not source.feed_url:
        return _failure(source, ValidationError("Source has no feed URL"))

    logger.info(f"Fetching feed: {source.title}")
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout, follow_redirects=True)

    attempts = 0
    status_code: int | None = None
    response_time_ms: float | None = None
    deadline = perf_counter() + timeout

    try:
        response = None
        body = b""
        for profile_name, headers in (
            ("rewind", FEED_AGENT_HEADERS),
            ("browser", BROWSER_HEADERS),
        ):
            attempts += 1
            request_headers = dict(headers)
            if source.last_successful_fetch_at is not None:
                request_headers["If-Modified-Since"] = format_datetime(
                    source.last_successful_fetch_at.astimezone(timezone.utc), usegmt=True
                )
            response, body, response_time_ms = _fetch_response(
                client, source.feed_url, request_headers, deadline
            )
            status_code = response.status_code

            if status_code in BOT_FILTER_RETRY_STATUS_CODES and headers is FEED_AGENT_HEADERS:
                logger.debug(f"{source.title}: got {status_code} as {profile_name}, retrying as browser")
                continue
            break

        if response is None:
            raise TransportError("Feed request did not produce a response")

        if status_code == 304:
            logger.info(f"{source.title}: not modified")
            return FetchResult(
                source_id=source.id,
                records=[],
                success=True,
                status_code=status_code,
                not_modified=True,
                attempts=attempts,
                response_time_ms=response_time_ms,
            )

        if status_code >= 400:
            message = f"HTTP {status_code} for {response.url}"
            if content_type := response.headers.get("content-type"):
                message += f" | content-type: {content_type}"
            logger.warning(f"Feed HTTP error for {source.title}: {message}")
            return _failure(
                source,
                TransportError(message, retryable=status_code in RETRYABLE_STATUS_CODES),
                status_code=status_code,
                attempts=attempts,
                response_time_ms=response_time_ms,
            )

        feed = feedparser.parse(body)
        if feed.bozo and not feed.entries:
            message = str(feed.get("bozo_exception") or "Unparseable feed document")
            logger.warning(f"Feed parse error for {source.title}: {message}")
            return _failure(
                source,
                ParseError(message),
                status_code=status_code,
                attempts=attempts,
                response_time_ms=response_time_ms,
            )
        if feed.bozo:
            logger.debug(f"{source.title}: recoverable feed issue: {feed.get('bozo_exception')}")

        records = [entry_to_record(entry) for entry in feed.entries[:max_entries]]
        logger.info(f"Found {len(records)} entries in {source.title}")

        return FetchResult(
            source_id=source.id,
            records=records,
            success=True,
            status_code=status_code,
            attempts=attempts,
            response_time_ms=response_time_ms,
            entry_count=len(feed.entries),
            feed_title=feed.feed.get("title"),
        )

    except httpx.TimeoutException as exc:
        logger.error(f"Timeout fetching {source.title}: {exc}")
        return _failure(
            source,
            TransportError(f"Request timed out after {timeout}s: {exc}"),
            status_code=status_code,
            attempts=max(attempts, 1),
            response_time_ms=response_time_ms,
        )
    except httpx.HTTPError as exc:
        logger.error(f"HTTP error fetching {source.title}: {exc}")
        return _failure(
            source,
            TransportError(str(exc) or exc.__class__.__name__),
            status_code=status_code,
            attempts=max(attempts, 1),
        )
    except PipelineError as exc:
        logger.error(f"Failed to fetch {source.title}: {exc}")
        return _failure(source, exc, status_code=status_code, attempts=max(attempts, 1))
    finally:
        if owns_client:
            client.close()


def _fetch_response(
    client: httpx.Client,
    url: str,
    headers: dict[str, str],
    deadline: float,
) -> tuple[httpx.Response, bytes, float]:
    """Stream a response body, aborting once the overall deadline passes."""
    started = perf_counter()
    chunks: list[bytes] = []
    with client.stream("GET", url, headers=headers) as response:
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            if perf_counter() > deadline:
                raise DeadlineExceeded("Total fetch deadline exceeded", request=response.request)
    return response, b"".join(chunks), (perf_counter() - started) * 1000


def _failure(source: ContentSource, error: PipelineError, **extra: Any) -> FetchResult:
    return FetchResult(
        source_id=source.id,
        records=[],
        success=False,
        error=str(error),
        error_code=error.code,
        retryable=error.retryable,
        **extra,
    )


def entry_to_record(entry: dict) -> RawRecord:
    """Map one feedparser entry onto a RawRecord."""
    audio_url, audio_type, audio_length = _extract_enclosure(entry)
    return RawRecord(
        natural_key=entry.get("id") or entry.get("guid") or entry.get("link") or None,
        title=(entry.get("title") or "").strip(),
        link=entry.get("link") or None,
        author=_extract_author(entry),
        published=_parse_entry_date(entry),
        content_html=_extract_content_html(entry),
        summary=entry.get("summary") or "",
        audio_url=audio_url,
        audio_type=audio_type,
        audio_length=audio_length,
        itunes_duration=entry.get("itunes_duration") or None,
        image_url=_extract_image(entry),
        categories=[tag["term"] for tag in entry.get("tags", []) if tag.get("term")],
    )


def _extract_content_html(entry: dict) -> str:
    """Prefer the longest full-content body over the summary."""
    bodies = [part.get("value", "") for part in entry.get("content", []) if part.get("value")]
    if bodies:
        return max(bodies, key=len)
    return entry.get("summary") or ""


def _extract_enclosure(entry: dict) -> tuple[str | None, str | None, int | None]:
    for link in entry.get("links", []):
        if link.get("rel") != "enclosure":
            continue
        media_type = link.get("type") or ""
        if media_type.startswith(("audio/", "video/")) or not media_type:
            try:
                length = int(link.get("length") or 0) or None
            except ValueError:
                length = None
            return link.get("href"), media_type or None, length
    return None, None, None


def _extract_image(entry: dict) -> str | None:
    if image := entry.get("image"):
        if href := image.get("href"):
            return href
    if thumbnails := entry.get("media_thumbnail"):
        return thumbnails[0].get("url")
    return None


def _parse_entry_date(entry: dict) -> datetime | None:
    """Parse publication date from feed entry."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        if parsed := entry.get(field):
            try:
                return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
            except (ValueError, OverflowError):
                continue

    for field in ("published", "updated", "created"):
        if date_str := entry.get(field):
            try:
                dt = parse_date(date_str)
            except (ValueError, ParserError, OverflowError):
                continue
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt

    return None


def _extract_author(entry: dict) -> str | None:
    if author := entry.get("author"):
        return author
    if author_detail := entry.get("author_detail"):
        if name := author_detail.get("name"):
            return name
    if authors := entry.get("authors"):
        if name := authors[0].get("name"):
            return name
    return None
