"""
Compilation cache: maps a fingerprint of (optimizer flags, source) to the
parsed and optimized Program.
"""

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from aether.aether_datatypes import Program


logger = logging.getLogger(__name__)

DEFAULT_CACHE_CAPACITY = 256


def fingerprint(source: str, flags: Tuple[bool, ...]) -> str:
    """SHA-256 over the optimizer flags and the UTF-8 source text."""
    h = hashlib.sha256()
    h.update(("flags:" + "".join("1" if f else "0" for f in flags) + "\n").encode("ascii"))
    h.update(source.encode("utf-8"))
    return h.hexdigest()


@dataclass
class CacheEntry:
    fingerprint: str
    program: Program
    node_count: int
    flags: Tuple[bool, ...]
    compile_ms: float
    created: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    capacity: Optional[int]
    evictions: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "capacity": self.capacity,
            "evictions": self.evictions,
        }


class CompilationCache:
    """LRU map of fingerprint -> CacheEntry. ``capacity=None`` is unbounded."""

    def __init__(self, capacity: Optional[int] = DEFAULT_CACHE_CAPACITY):
        if capacity is not None and capacity < 1:
            raise ValueError("cache capacity must be at least 1 or None")
        self.capacity = capacity
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            logger.debug("cache miss %s", key[:12])
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        logger.debug("cache hit %s", key[:12])
        return entry

    def insert(self, key: str, program: Program, *, node_count: int = 0,
               flags: Tuple[bool, ...] = (), compile_ms: float = 0.0) -> CacheEntry:
        entry = CacheEntry(key, program, node_count, tuple(flags), compile_ms, time.time())
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if self.capacity is not None:
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug("cache evicted %s", evicted[:12])
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(self.hits, self.misses, len(self._entries), self.capacity, self.evictions)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
