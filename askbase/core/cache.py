"""
Keyed Cache

Small injectable in-memory cache with explicit invalidation.
Whoever owns the data owns the cache instance and decides when
entries go stale.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyedCache(Generic[K, V]):
    """
    Thread-safe LRU-bounded mapping with ``put/get/invalidate/clear``.

    Usage::

        cache: KeyedCache[str, SourceDocument] = KeyedCache(max_entries=256)
        cache.put(path, document)
        cached = cache.get(path)  # None on miss
        cache.invalidate(path)

    Args:
        max_entries: Oldest entries are evicted beyond this size.
            ``None`` disables eviction.
    """

    def __init__(self, max_entries: int | None = 1024) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._max_entries = max_entries
        self._data: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            value = self._data.get(key)
            if value is not None:
                self._data.move_to_end(key)
            return value

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            if self._max_entries is not None:
                while len(self._data) > self._max_entries:
                    self._data.popitem(last=False)

    def invalidate(self, key: K) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
