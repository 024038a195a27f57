from __future__ import annotations

from fedilink.services.result_cache import ResultCache, evict_oldest


def test_evict_oldest_drops_the_oldest_quarter_without_mutating_input() -> None:
    entries = {f"k{index}": index for index in range(8)}
    trimmed = evict_oldest(entries, 8)
    assert list(trimmed) == ["k2", "k3", "k4", "k5", "k6", "k7"]
    assert len(entries) == 8


def test_evict_oldest_is_a_copy_below_cap() -> None:
    entries = {"a": 1}
    trimmed = evict_oldest(entries, 4)
    assert trimmed == entries
    assert trimmed is not entries


def test_cache_keeps_newest_entries_after_overflow() -> None:
    cache: ResultCache[int] = ResultCache(max_entries=500)
    for index in range(501):
        cache.store(f"https://example.com/{index}", index)

    assert cache.size <= 500
    assert cache.size == 376
    keys = cache.keys()
    assert "https://example.com/0" not in keys
    assert "https://example.com/124" not in keys
    assert "https://example.com/125" in keys
    assert keys[-1] == "https://example.com/500"


def test_cache_overwrite_does_not_evict() -> None:
    cache: ResultCache[str] = ResultCache(max_entries=2)
    cache.store("a", "1")
    cache.store("b", "2")
    cache.store("a", "3")
    assert cache.size == 2
    assert cache.lookup("a") == (True, "3")


def test_cache_distinguishes_missing_from_cached_none() -> None:
    cache: ResultCache[str] = ResultCache()
    assert cache.lookup("x") == (False, None)
    cache.store("x", None)
    assert cache.lookup("x") == (True, None)
    assert cache.clear() == 1
    assert cache.size == 0
