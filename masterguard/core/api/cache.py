"""
Response Cache
==============

Bounded TTL cache for successful GET responses.

Entries expire a fixed time after insertion. When full, the
oldest-inserted entry is evicted regardless of how recently it was read.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

from masterguard.security.constants import API_CACHE_MAX_ENTRIES, API_CACHE_TTL_SECONDS


class ResponseCache:
    """
    Insertion-ordered cache with TTL and a size cap.

    Usage:
        cache = ResponseCache()
        cache.set(("/orders", ()), payload)
        cache.get(("/orders", ()))  # payload, or None once expired
    """

    __slots__ = ("_entries", "_ttl", "_max_entries", "_time", "_lock")

    def __init__(
        self,
        ttl_seconds: float = API_CACHE_TTL_SECONDS,
        max_entries: int = API_CACHE_MAX_ENTRIES,
        time_func: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._time = time_func
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Optional[Any]:
        """Cached value, or ``default`` when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default

            stored_at, value = entry
            if self._time() - stored_at >= self._ttl:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (self._time(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[Hashable]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None
