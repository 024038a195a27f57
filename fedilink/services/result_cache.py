from __future__ import annotations

import logging
from threading import Lock
from typing import Generic, TypeVar

LOGGER = logging.getLogger("fedilink.result_cache")

DEFAULT_CACHE_MAX_ENTRIES = 500

V = TypeVar("V")


def evict_oldest(entries: dict[str, V], cap: int) -> dict[str, V]:
    """
    Return ``entries`` with room made for one more insert.

    When the table has reached ``cap``, the oldest quarter of ``cap`` (by
    insertion order) is dropped. Access time is not tracked, so this only
    approximates LRU. The input mapping is never mutated.
    """
    if len(entries) < cap:
        return dict(entries)
    drop_count = max(1, cap // 4)
    return dict(list(entries.items())[drop_count:])


class ResultCache(Generic[V]):
    """Bounded URL-keyed store owned by a single resolver instance."""

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        name: str = "results",
    ) -> None:
        self._max_entries = max(1, max_entries)
        self._name = name
        self._lock = Lock()
        self._entries: dict[str, V | None] = {}

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def lookup(self, key: str) -> tuple[bool, V | None]:
        """``(hit, value)``; a hit may carry ``None`` when negative results are cached."""
        with self._lock:
            if key not in self._entries:
                return False, None
            return True, self._entries[key]

    def store(self, key: str, value: V | None) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                before = len(self._entries)
                self._entries = evict_oldest(self._entries, self._max_entries)
                LOGGER.debug(
                    "cache evicted cache=%s evicted=%s limit=%s",
                    self._name,
                    before - len(self._entries),
                    self._max_entries,
                )
            self._entries[key] = value

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries = {}
        LOGGER.info("cache cleared cache=%s removed=%s", self._name, removed)
        return removed
