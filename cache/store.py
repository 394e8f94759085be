"""
cache/store.py -- In-process TTL cache for short-lived read models.

Used for the per-user project listing (owned + shared projects with task
counts), which every client fetches on load and after most mutations. A few
seconds of staleness is acceptable; a stale listing after the caller's own
write is not, so writers call invalidate() explicitly.

Keys are plain strings. invalidate(prefix) drops every key starting with
prefix, which lets a share or delete clear the listings of everyone involved
without knowing which of them are cached.

Every invalidate() bumps a generation counter. A reader that loaded its value
before a concurrent invalidate() passes the generation it saw to set(), and
the stale value is dropped instead of being cached.

Usage:
    cache = TTLCache(ttl=5)
    data = cache.get("projects:user:1")   # returns value or None
    gen = cache.generation                # before reading the source of truth
    cache.set("projects:user:1", data, generation=gen)
    cache.invalidate("projects:")         # after any project/share mutation
    cache.purge_expired()                 # call periodically to trim old entries
"""

import threading
import time
from typing import Any, Callable, Optional

_DEFAULT_TTL = 5  # seconds


class TTLCache:
    def __init__(self, ttl: float = _DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._generation = 0
        # FastAPI runs sync handlers on a threadpool; guard the dict.
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key if it exists and hasn't expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return value

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def set(self, key: str, value: Any, generation: Optional[int] = None) -> bool:
        """Store value under key, replacing any existing entry.

        With generation given, the value is only stored if no invalidate()
        has happened since that generation was read. Returns whether it was stored.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[key] = (self._clock(), value)
            return True

    def invalidate(self, prefix: str = "") -> int:
        """Drop every entry whose key starts with prefix ("" clears all). Returns count removed."""
        with self._lock:
            self._generation += 1
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of entries removed."""
        cutoff = self._clock() - self.ttl
        with self._lock:
            doomed = [k for k, (stored_at, _) in self._entries.items() if stored_at <= cutoff]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self) -> None:
        self.invalidate()
