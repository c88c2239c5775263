"""Shared fixtures for pipeline tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from rewind.config import Settings
from rewind.models import ContentSource, SourceKind
from rewind.storage.db import Database


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings isolated to a temporary directory."""
    monkeypatch.setenv("LLM_API_KEY", "test-key")
    monkeypatch.delenv("LLM_MODEL", raising=False)
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    return Settings(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        summarize_timeout_seconds=10,
        sync_max_workers=3,
    )


@pytest.fixture
def db(settings: Settings) -> Database:
    return Database(settings.db_path)


@pytest.fixture
def source(db: Database) -> ContentSource:
    created, _ = db.register_source("Example Blog", "https://example.com/feed.xml")
    return created


@pytest.fixture
def podcast_source(db: Database) -> ContentSource:
    created, _ = db.register_source(
        "Example Show", "https://example.com/podcast.xml", kind=SourceKind.PODCAST
    )
    return created
