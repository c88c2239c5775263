"""Tests for OPML import parsing."""

import pytest

from rewind.errors import ParseError
from rewind.ingest.opml import load_opml, parse_opml
from rewind.models import SourceKind

OPML = """<?xml version="1.0" encoding="UTF-8"?>
<opml version="2.0">
  <head><title>Subscriptions</title></head>
  <body>
    <outline text="Tech">
      <outline type="rss" text="Example Blog" title="Example Blog" xmlUrl="https://example.com/feed.xml"/>
      <outline type="podcast" text="Example Show" xmlUrl="https://example.com/podcast.xml"/>
    </outline>
    <outline type="rss" text="Duplicate" xmlUrl="https://example.com/feed.xml"/>
    <outline type="rss" text="" xmlUrl="https://untitled.example.com/rss"/>
  </body>
</opml>
"""


def test_parses_nested_outlines():
    feeds = parse_opml(OPML)

    assert [f.feed_url for f in feeds] == [
        "https://example.com/feed.xml",
        "https://example.com/podcast.xml",
        "https://untitled.example.com/rss",
    ]
    assert feeds[0].title == "Example Blog"
    assert feeds[1].kind == SourceKind.PODCAST
    assert feeds[0].kind == SourceKind.RSS
    assert feeds[2].title is None


def test_rejects_non_opml():
    with pytest.raises(ParseError):
        parse_opml("<html><body>hello</body></html>")


def test_load_from_file(tmp_path):
    path = tmp_path / "subs.opml"
    path.write_text(OPML, encoding="utf-8")
    assert len(load_opml(path)) == 3
