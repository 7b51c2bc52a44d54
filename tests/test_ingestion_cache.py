"""Tests for the response cache module."""

import pytest

from equine_agent.core.enums import RecordKind
from equine_agent.ingestion.cache import TTLCache


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


class TestTTLCache:
    """Tests for the TTLCache class."""

    def test_get_before_expiry(self, clock: Clock) -> None:
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("k", "<html/>")

        clock.now += 59.999
        assert cache.get("k") == "<html/>"

    def test_never_returned_at_or_after_expiry(self, clock: Clock) -> None:
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("k", "<html/>")

        clock.now += 60
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_explicit_ttl(self, clock: Clock) -> None:
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("k", "v", ttl=5)

        clock.now += 5.001
        assert cache.get("k", "miss") == "miss"

    def test_non_positive_ttl_stores_nothing(self, clock: Clock) -> None:
        cache = TTLCache(clock=clock)
        cache.set("k", "v", ttl=0)
        assert len(cache) == 0

    def test_overwrite_refreshes_expiry(self, clock: Clock) -> None:
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("k", "old")
        clock.now += 8
        cache.set("k", "new")
        clock.now += 8

        assert cache.get("k") == "new"

    def test_max_entries_evicts_oldest_expiry(self, clock: Clock) -> None:
        cache = TTLCache(default_ttl=100, max_entries=2, clock=clock)
        cache.set("a", 1)
        clock.now += 1
        cache.set("b", 2)
        clock.now += 1
        cache.set("c", 3)

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_sweep(self, clock: Clock) -> None:
        cache = TTLCache(clock=clock)
        cache.set("short", 1, ttl=10)
        cache.set("long", 2, ttl=100)

        clock.now += 50
        assert cache.sweep() == 1
        assert len(cache) == 1

    def test_delete_and_clear(self, clock: Clock) -> None:
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a") is None

        cache.clear()
        assert len(cache) == 0

    def test_stats(self, clock: Clock) -> None:
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")

        stats = cache.get_stats()
        assert stats["entries"] == 1
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)

    def test_empty_stats(self) -> None:
        assert TTLCache().get_stats()["hit_rate"] == 0.0


class TestMakeKey:
    """Tests for cache key construction."""

    def test_param_order_does_not_matter(self) -> None:
        a = TTLCache.make_key("FEI", "rankings", {"year": "2024", "discipline": "S"})
        b = TTLCache.make_key("FEI", "rankings", {"discipline": "S", "year": "2024"})
        assert a == b

    def test_enum_and_string_kinds_agree(self) -> None:
        assert TTLCache.make_key("FEI", RecordKind.RANKINGS) == TTLCache.make_key("FEI", "rankings")

    def test_distinguishes_inputs(self) -> None:
        keys = {
            TTLCache.make_key("FEI", "rankings", {"year": "2024"}),
            TTLCache.make_key("FEI", "rankings", {"year": "2023"}),
            TTLCache.make_key("FEI", "results", {"year": "2024"}),
            TTLCache.make_key("USEF", "rankings", {"year": "2024"}),
        }
        assert len(keys) == 4

    def test_prefix(self) -> None:
        assert TTLCache.make_key("FEI", "events").startswith("FEI:events:")
