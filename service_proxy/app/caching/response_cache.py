"""
In-memory response cache for proxied catalogue queries.
"""

import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

from shared.logging import get_logger

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_LIST_TTL = 600.0
DEFAULT_DETAIL_TTL = 300.0

_DETAIL_SEGMENT = re.compile(r"^\d+$")


@dataclass(frozen=True)
class CacheEntry:
    key: str
    data: Any
    expires_at: float

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


def is_detail_path(path: str) -> bool:
    """A trailing purely-numeric segment marks a single-item endpoint."""
    segments = [segment for segment in urlsplit(path).path.split("/") if segment]
    return bool(segments) and bool(_DETAIL_SEGMENT.match(segments[-1]))


def ttl_for_path(path: str, list_ttl: float = DEFAULT_LIST_TTL, detail_ttl: float = DEFAULT_DETAIL_TTL) -> float:
    """TTL class for an upstream path or URL."""
    return detail_ttl if is_detail_path(path) else list_ttl


class ResponseCache:
    """Bounded TTL cache with LRU-by-touch ordering.

    Entries live in an ``OrderedDict``: the front is the structurally-oldest
    entry, the back the most recently inserted or read one. Capacity eviction
    pops the front; TTL expiry is only checked when a key is read.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.clock = clock
        self.on_evict = on_evict
        self.logger = get_logger("proxy.cache")
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` and mark it most recently used."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self.clock() >= entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                self.logger.debug("Cache entry expired", key=key)
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> CacheEntry:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        with self._lock:
            entry = CacheEntry(key=key, data=value, expires_at=self.clock() + ttl_seconds)
            if key in self._entries:
                self._entries[key] = entry
                self._entries.move_to_end(key)
                return entry

            if len(self._entries) >= self.max_entries:
                oldest, _ = self._entries.popitem(last=False)
                self._evictions += 1
                self.logger.debug("Cache entry evicted", key=oldest)
                if self.on_evict:
                    self.on_evict(oldest)

            self._entries[key] = entry
            return entry

    def remaining_ttl(self, entry: CacheEntry) -> float:
        return entry.remaining(self.clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        # Does not touch ordering or expire anything.
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }
