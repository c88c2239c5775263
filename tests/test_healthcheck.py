"""Tests for the monitoring healthcheck script."""

import importlib.util
from datetime import datetime, timezone
from pathlib import Path

import pytest

from rewind import config

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "healthcheck.py"


@pytest.fixture
def healthcheck(settings, monkeypatch):
    monkeypatch.setattr(config, "_settings", settings)
    spec = importlib.util.spec_from_file_location("healthcheck", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_missing_database_is_unhealthy(healthcheck, capsys) -> None:
    assert healthcheck.main() == 1
    assert "Database not found" in capsys.readouterr().out


def test_recent_sync_is_healthy(healthcheck, db, capsys) -> None:
    db.set_last_sync_time(datetime.now(timezone.utc))

    assert healthcheck.main() == 0
    assert "HEALTHY" in capsys.readouterr().out


def test_failing_source_is_reported(healthcheck, db, source, settings, capsys) -> None:
    db.set_last_sync_time(datetime.now(timezone.utc))
    for _ in range(settings.pause_error_threshold):
        db.record_fetch_failure(source.id, "HTTP 500")

    assert healthcheck.main() == 1
    assert "Example Blog failing: HTTP 500" in capsys.readouterr().out
