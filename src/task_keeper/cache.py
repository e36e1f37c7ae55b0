"""In-memory TTL cache for project task lists."""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Key/value cache with per-entry expiry and least-recently-used eviction.

    Shared by all projects; callers namespace their keys (e.g. ``tasks:<project>``).
    """

    def __init__(
        self,
        ttl: float = 10.0,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize empty cache.

        Args:
            ttl: Default time-to-live in seconds
            max_size: Maximum number of entries before eviction
            clock: Monotonic time source (overridable in tests)
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        """Return live value for key, or None if absent or expired."""
        entry = self._data.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._data[key]
            self._misses += 1
            return None

        self._data.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store value, evicting expired then least recently used entries when full."""
        now = self._clock()
        if key in self._data:
            self._data.move_to_end(key)
        elif len(self._data) >= self._max_size:
            self._purge_expired(now)
            while len(self._data) >= self._max_size:
                evicted, _ = self._data.popitem(last=False)
                self._evictions += 1
                logger.debug(f"[Cache] Evicted '{evicted}'")

        self._data[key] = _Entry(value=value, expires_at=now + (self._ttl if ttl is None else ttl))

    def delete(self, key: str) -> None:
        """Remove key regardless of TTL."""
        self._data.pop(key, None)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        self._data.clear()
        self._hits = self._misses = self._evictions = 0

    def stats(self) -> dict[str, float]:
        """Hit/miss/eviction counters, current size and hit rate percentage."""
        total = self._hits + self._misses
        hit_rate = (self._hits / total) * 100 if total else 0.0
        return {
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "size": len(self._data),
            "hit_rate": round(hit_rate, 2),
        }

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._data.items() if now >= entry.expires_at]
        for key in expired:
            del self._data[key]
