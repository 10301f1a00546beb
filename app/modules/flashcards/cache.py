"""Bounded LRU cache of unified set snapshots keyed by normalized topic."""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple


def topic_cache_key(topic: str) -> str:
    return " ".join((topic or "").split()).lower()


class TopicCache:
    """LRU cache with TTL; evicts the least recently used entry when full.

    Instances are app-scoped and handed to request handlers through a
    dependency; nothing in this module is global.
    """

    def __init__(
        self,
        max_size: int = 256,
        ttl: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max(1, int(max_size))
        self.ttl = float(ttl)
        self._clock = clock
        self._entries: OrderedDict[str, Tuple[Any, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, topic: str) -> Optional[Any]:
        key = topic_cache_key(topic)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        value, stored_at = entry
        if self.ttl and self._clock() - stored_at > self.ttl:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, topic: str, value: Any) -> None:
        key = topic_cache_key(topic)
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (value, self._clock())
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.evictions += 1

    def invalidate(self, *topics: str) -> None:
        for topic in topics:
            self._entries.pop(topic_cache_key(topic), None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }
