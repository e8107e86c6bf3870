"""
Activity Watcher
================

Turns a stream of user-interaction signals into debounced session
touches.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Final, Optional

from masterguard.core.auth.session_control import (
    REASON_EXPIRED,
    ExpiryCallback,
    SessionExpiredError,
    SessionManager,
    SessionNotFoundError,
)
from masterguard.security.constants import ACTIVITY_DEBOUNCE_SECONDS
from masterguard.utils.clock import Clock, utc_now


ACTIVITY_SIGNALS: Final[frozenset[str]] = frozenset({"pointer", "key", "scroll", "touch"})


class ActivityWatcher:
    """
    Debounced activity forwarding for one session.

    Usage:
        watcher = ActivityWatcher(manager, session_id, on_expired=handle_expiry)
        watcher.start()

        watcher.notify("key")  # forwarded at most once per debounce window

        watcher.stop()
    """

    __slots__ = (
        "_manager", "_session_id", "_debounce", "_clock", "_on_expired",
        "_last_forwarded", "_running", "_lock", "_log",
    )

    def __init__(
        self,
        manager: SessionManager,
        session_id: str,
        debounce_seconds: float = ACTIVITY_DEBOUNCE_SECONDS,
        clock: Clock = utc_now,
        on_expired: Optional[ExpiryCallback] = None,
    ) -> None:
        self._manager = manager
        self._session_id = session_id
        self._debounce = timedelta(seconds=debounce_seconds)
        self._clock = clock
        self._on_expired = on_expired
        self._last_forwarded: Optional[datetime] = None
        self._running = False
        self._lock = threading.Lock()
        self._log = logging.getLogger("masterguard.auth.activity")

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    def notify(self, signal: str) -> bool:
        """
        Report one interaction.

        Returns:
            True if the signal was forwarded as a session touch

        Raises:
            ValueError: If the signal type is unknown
            StorageError: If the touch could not be persisted
        """
        if signal not in ACTIVITY_SIGNALS:
            raise ValueError(f"Unknown activity signal: {signal!r}")

        with self._lock:
            if not self._running:
                return False

            now = self._clock()
            if self._last_forwarded is not None and now - self._last_forwarded <= self._debounce:
                return False

            try:
                self._manager.touch(self._session_id)
            except (SessionExpiredError, SessionNotFoundError):
                self._running = False
                expired = True
            else:
                self._last_forwarded = now
                expired = False

        if expired:
            self._log.info("Activity on ended session %s; watcher stopped", self._session_id)
            if self._on_expired:
                self._on_expired(self._session_id, REASON_EXPIRED)

        return not expired
