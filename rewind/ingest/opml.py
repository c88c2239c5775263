"""OPML subscription list import."""

from pathlib import Path
from typing import NamedTuple

from bs4 import BeautifulSoup

from rewind.errors import ParseError
from rewind.models import SourceKind


class OpmlFeed(NamedTuple):
    title: str | None
    feed_url: str
    kind: SourceKind


def parse_opml(text: str) -> list[OpmlFeed]:
    """Extract feed outlines (any nesting depth) from an OPML document."""
    soup = BeautifulSoup(text, "html.parser")
    if soup.find("opml") is None:
        raise ParseError("Not an OPML document")

    feeds: list[OpmlFeed] = []
    seen: set[str] = set()
    # html.parser lowercases attribute names (xmlUrl -> xmlurl)
    for outline in soup.find_all("outline"):
        url = (outline.get("xmlurl") or "").strip()
        if not url or url in seen:
            continue
        seen.add(url)
        kind = SourceKind.PODCAST if "podcast" in (outline.get("type") or "").lower() else SourceKind.RSS
        feeds.append(
            OpmlFeed(
                title=(outline.get("title") or outline.get("text") or "").strip() or None,
                feed_url=url,
                kind=kind,
            )
        )
    return feeds


def load_opml(path: Path) -> list[OpmlFeed]:
    return parse_opml(path.read_text(encoding="utf-8"))
