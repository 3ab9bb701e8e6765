"""Thread-safe TTL cache for dataset descriptors and episode locations.

Entries expire after a fixed time-to-live and the oldest entries are
evicted once the cache holds more than ``max_entries`` items. Caches are
plain objects passed to the components that use them, so tests can
build a fresh one (or inject a fake clock) without touching global state.

Usage::

    cache = TTLCache(ttl=300.0, max_entries=64)
    descriptor = cache.get_or_load("lerobot/pusht", lambda: load(...))
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from threading import Lock
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[V]):
    """Time- and size-bounded mapping guarded by a lock.

    Reads either return a complete, unexpired entry or report a miss.
    Loading happens outside the lock so a slow fetch never blocks readers
    of other keys; if two threads load the same key concurrently, the
    first stored value wins and both callers receive it.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()
        self._lock = Lock()

    def get(self, key: Hashable, default: Any = None) -> V | Any:
        """Return the cached value for key, or default if missing or expired."""
        with self._lock:
            value = self._get_locked(key)
        return default if value is _MISSING else value

    def set(self, key: Hashable, value: V) -> None:
        """Store value under key, evicting expired and overflow entries."""
        with self._lock:
            self._set_locked(key, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        """Return the cached value, calling loader on a miss.

        Args:
            key: Cache key.
            loader: Zero-argument callable producing the value.

        Returns:
            Cached or freshly loaded value.
        """
        with self._lock:
            value = self._get_locked(key)
        if value is not _MISSING:
            logger.debug("Cache hit for %r", key)
            return value

        loaded = loader()

        with self._lock:
            existing = self._get_locked(key)
            if existing is not _MISSING:
                return existing
            self._set_locked(key, loaded)
        return loaded

    def invalidate(self, key: Hashable) -> None:
        """Drop a single entry if present."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired_locked()
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return self._get_locked(key) is not _MISSING

    # ── Internals (caller holds the lock) ──

    def _get_locked(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return _MISSING
        return value

    def _set_locked(self, key: Hashable, value: V) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl, value)
        self._purge_expired_locked()
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted %r from cache", evicted)

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
