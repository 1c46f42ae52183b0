"""In-memory TTL cache shared by metadata fetches, probes and search results."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Tuple


class TTLCache:
    """Bounded key/value map whose entries expire ``ttl`` seconds after insertion.

    Expired entries are dropped on read; when a write pushes the map past
    ``max_entries`` every stale entry is swept, then the oldest entries are
    evicted until the map is back under the bound. There is no background
    sweeper.

    A cached ``None`` is a real value (negative caching): use ``lookup`` to
    tell it apart from a miss.
    """

    def __init__(
        self,
        ttl: float,
        max_entries: int = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = float(ttl)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.lookup(key)[0]

    def lookup(self, key: Hashable) -> Tuple[bool, Any]:
        """Return ``(hit, value)``; expired entries count as misses and are removed."""

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            value, stamp = entry
            if now - stamp > self.ttl:
                del self._entries[key]
                return False, None
            return True, value

    def get(self, key: Hashable, default: Any = None) -> Any:
        hit, value = self.lookup(key)
        return value if hit else default

    def set(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now)
            if len(self._entries) > self.max_entries:
                self._evict(now)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _evict(self, now: float) -> None:
        # caller holds the lock
        stale = [k for k, (_, stamp) in self._entries.items() if now - stamp > self.ttl]
        for key in stale:
            del self._entries[key]
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1][1])[:overflow]
            for key, _ in oldest:
                del self._entries[key]


def cache_key(*parts: Any) -> str:
    return "|".join("" if p is None else str(p) for p in parts)


__all__ = ["TTLCache", "cache_key"]
