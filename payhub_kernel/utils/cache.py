"""
Caller-owned TTL cache.

There are no module-level caches in the kernel.  A caller that wants to
memoise an expensive read (approval stats on a dashboard, say) creates a
``TTLCache``, passes it in, and calls ``invalidate()`` when it knows the
underlying data moved.  Expiry is measured with the injected Clock so
tests can step time deterministically.
"""

import threading
from collections.abc import Callable, Hashable
from datetime import datetime, timedelta
from typing import Any

from payhub_kernel.domain.clock import Clock, SystemClock


class TTLCache:
    """Thread-safe key/value cache whose entries expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, clock: Clock | None = None):
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._entries: dict[Hashable, tuple[datetime, Any]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl.total_seconds()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return default
            expires_at, value = hit
            if self._clock.now() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        """Store ``value`` and drop every entry that has already expired."""
        with self._lock:
            now = self._clock.now()
            expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (now + self._ttl, value)

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss.

        ``compute`` runs outside the lock; two racing misses may both
        compute, and the later one wins.
        """
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = compute()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
