from __future__ import annotations

import hashlib
import threading
from collections import OrderedDict
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Any

from bytelens.core.io import Buffer

CacheKey = tuple[str, int, int, str, str]


def content_fingerprint(data: Buffer) -> str:
    """Digest of the bytes actually parsed."""
    return hashlib.blake2b(data, digest_size=16).hexdigest()


def make_key(
    format_id: str, start: int, end: int, schema_hash: str, content_hash: str
) -> CacheKey:
    return (format_id, start, end, schema_hash, content_hash)


@dataclass(frozen=True)
class CacheStats:
    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int


class ResultCache:
    """Thread-safe LRU of parse results, bounded by entry count.

    Entries are never invalidated implicitly; keys carry the schema and
    content fingerprints, so a changed schema or buffer simply misses.
    """

    def __init__(self, capacity: int = 128) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)  # most-recent
                self._hits += 1
                return self._items[key]
            self._misses += 1
            return None

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._items[key] = value
            self._items.move_to_end(key)
            while len(self._items) > self._capacity:
                self._items.popitem(last=False)  # evict LRU
                self._evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._items

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._items),
                capacity=self._capacity,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )
