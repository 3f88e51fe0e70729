"""
TTL cache -- expiring in-memory cache with an injected clock.

Responsibility:
    Hold values (the runtime configuration map) for a bounded time and
    drop them on explicit invalidation.  Replaces a module-level mutable
    map: each owner constructs its cache and passes it where needed, and
    tests drive expiry with a DeterministicClock.

Invariants enforced:
    - An entry is returned only while ``now < stored_at + ttl``.
    - ``invalidate()`` with no key empties the cache.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generic, Hashable, TypeVar

from accrual_kernel.domain.clock import Clock, SystemClock

V = TypeVar("V")


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    expires_at: datetime


class TTLCache(Generic[V]):
    """Thread-safe key/value cache whose entries expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, clock: Clock | None = None) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._entries: dict[Hashable, _Entry[V]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl.total_seconds()

    def get(self, key: Hashable) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock.now() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, self._clock.now() + self._ttl)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        """Return the cached value, calling ``loader`` on a miss or expiry."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.put(key, value)
        return value

    def invalidate(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
