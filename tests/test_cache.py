"""Tests for the summarizer response cache."""

import pytest

from rewind.storage.cache import SUMMARY_KIND, CacheStore, make_cache_key


class TestMakeCacheKey:
    def test_deterministic(self):
        assert make_cache_key("item-1", "hash-a", "gemini-2.5-flash") == make_cache_key(
            "item-1", "hash-a", "gemini-2.5-flash"
        )

    @pytest.mark.parametrize(
        "other",
        [
            ("item-2", "hash-a", "gemini-2.5-flash"),
            ("item-1", "hash-b", "gemini-2.5-flash"),
            ("item-1", "hash-a", "gpt-4o-mini"),
        ],
    )
    def test_any_component_changes_key(self, other):
        assert make_cache_key("item-1", "hash-a", "gemini-2.5-flash") != make_cache_key(*other)

    def test_key_is_hex_string(self):
        key = make_cache_key("item-1", "hash-a", "gemini-2.5-flash")
        assert len(key) == 64
        int(key, 16)


class TestCacheStore:
    @pytest.fixture
    def cache(self, tmp_path):
        return CacheStore(tmp_path / "cache.db", default_ttl_days=7)

    def test_get_missing_returns_none(self, cache):
        assert cache.get(SUMMARY_KIND, "nonexistent") is None

    def test_set_then_get(self, cache):
        data = {"output": {"headline": "h"}, "model": "m", "input_tokens": 3}
        cache.set(SUMMARY_KIND, "key1", data)
        assert cache.get(SUMMARY_KIND, "key1") == data

    def test_expired_entry_is_hidden_then_cleaned(self, cache):
        cache.set(SUMMARY_KIND, "old", {"v": 1}, ttl_days=-1)
        assert cache.get(SUMMARY_KIND, "old") is None

        cache.set(SUMMARY_KIND, "new", {"v": 2})

        assert cache.stats() == {"total_entries": 1, "expired_entries": 0}

    def test_set_overwrites_existing(self, cache):
        cache.set(SUMMARY_KIND, "key1", {"v": 1})
        cache.set(SUMMARY_KIND, "key1", {"v": 2})
        assert cache.get(SUMMARY_KIND, "key1") == {"v": 2}

    def test_delete(self, cache):
        cache.set(SUMMARY_KIND, "key1", {"v": 1})
        assert cache.delete(SUMMARY_KIND, "key1") is True
        assert cache.delete(SUMMARY_KIND, "key1") is False
        assert cache.get(SUMMARY_KIND, "key1") is None

    def test_clear_by_kind(self, cache):
        cache.set(SUMMARY_KIND, "k1", {"a": 1})
        cache.set("other", "k2", {"b": 2})

        assert cache.clear(kind=SUMMARY_KIND) == 1
        assert cache.get("other", "k2") == {"b": 2}
        assert cache.clear() == 1

    def test_shares_database_file_with_store(self, db, settings):
        cache = CacheStore(settings.db_path)
        cache.set(SUMMARY_KIND, "k", {"a": 1})
        assert db.count_items() == 0
        assert cache.get(SUMMARY_KIND, "k") == {"a": 1}
