"""
Response Cache Module
=====================

Time-boxed in-memory cache for fetched page bodies, keyed by
(source, kind, request parameters). Entries are never returned after
their expiry; expired entries are evicted when read.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60


@dataclass
class CacheEntry:
    """A cached value with its expiry time (clock seconds)."""

    value: Any
    expires_at: float


class TTLCache:
    """
    Thread-safe TTL cache.

    Features:
    - Lazy expiry on read, plus an explicit sweep
    - Optional bound on the number of entries (oldest expiry evicted first)
    - Hit/miss statistics
    - Injectable clock for tests
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` is given none.
            max_entries: Maximum number of live entries, unbounded if None.
            clock: Monotonic time source.
        """
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(source: str, kind: str, params: Mapping[str, Any] | None = None) -> str:
        """Compute a cache key from source, record kind and request parameters.

        Parameter order does not matter.
        """
        kind = getattr(kind, "value", kind)
        payload = json.dumps(
            {"source": source, "kind": kind, "params": dict(params or {})},
            sort_keys=True,
            default=str,
        )
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]
        return f"{source}:{kind}:{digest}"

    def get(self, key: str, default: Any = None) -> Any:
        """Return a live value, or ``default`` on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value for ``ttl`` seconds; a non-positive TTL stores nothing."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(value=value, expires_at=now + ttl)
            if self.max_entries is not None and len(self._entries) > self.max_entries:
                self._evict_locked(now)

    def delete(self, key: str) -> None:
        """Remove an entry if present."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Evict all expired entries. Returns the number evicted."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_locked(self, now: float) -> None:
        self._sweep_locked(now)
        while self.max_entries is not None and len(self._entries) > self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
            del self._entries[oldest]
            logger.debug(f"Cache full, evicted {oldest}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with entries, hits, misses and hit_rate.
        """
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }
