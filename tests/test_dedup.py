"""Tests for the processed-event cache."""

import pytest

from lark_minutes.core.dedup import ProcessedEventCache


class TestProcessedEventCache:
    def test_first_admission_wins(self):
        cache = ProcessedEventCache()
        assert cache.admit("e1") is True
        assert cache.admit("e1") is False
        assert "e1" in cache
        assert len(cache) == 1

    def test_evicts_oldest_when_full(self):
        cache = ProcessedEventCache(max_size=2)
        cache.admit("a")
        cache.admit("b")
        cache.admit("c")
        assert "a" not in cache
        assert "b" in cache
        assert "c" in cache
        assert len(cache) == 2

    def test_rejected_duplicate_does_not_refresh_age(self):
        cache = ProcessedEventCache(max_size=2)
        cache.admit("a")
        cache.admit("b")
        cache.admit("a")
        cache.admit("c")
        assert "a" not in cache

    def test_evicted_id_is_admitted_again(self):
        cache = ProcessedEventCache(max_size=1)
        cache.admit("a")
        cache.admit("b")
        assert cache.admit("a") is True

    def test_clear(self):
        cache = ProcessedEventCache()
        cache.admit("a")
        cache.clear()
        assert len(cache) == 0
        assert cache.admit("a") is True

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ProcessedEventCache(max_size=0)
