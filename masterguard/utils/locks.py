"""
Keyed Locks
===========

Fixed pool of locks addressed by key. Two operations on the same key
always share a lock; the pool never grows with the number of keys seen.
"""

from __future__ import annotations

import threading
import zlib
from typing import Final


DEFAULT_STRIPES: Final[int] = 64


class StripedLock:
    """
    Per-key mutual exclusion over a bounded set of locks.

    Usage:
        locks = StripedLock()
        with locks.for_key(session_id):
            ...read, modify, write...

    Unrelated keys may share a stripe; that only costs throughput.
    """

    __slots__ = ("_locks",)

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def __len__(self) -> int:
        return len(self._locks)

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]
