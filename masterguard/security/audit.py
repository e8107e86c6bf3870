"""
Security Event Log
==================

Micro-batched, append-only security event logging with alert dispatch.

Features:
- Bounded in-memory ring for fast local queries (oldest evicted first)
- Batches flushed at a size threshold or when the oldest pending event
  reaches the time threshold, whichever comes first
- Failed batches go back to the front of the queue; re-delivery on retry
  is expected, so sinks should write idempotently where they can
- ``error``/``critical`` events are handed synchronously to every alert
  handler without waiting on the batch sink
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Final, Optional

from masterguard.db.store import KeyValueStore
from masterguard.security.constants import (
    EVENT_BATCH_SIZE,
    EVENT_BATCH_TIMEOUT_SECONDS,
    EVENT_RING_CAPACITY,
    SECURITY_ALERTS_PATH,
    SECURITY_LOGS_CRITICAL_PATH,
    SECURITY_LOGS_PATH,
)
from masterguard.security.events import (
    SecurityEvent,
    SecurityEventLevel,
    SecurityEventType,
)
from masterguard.security.statistics import SecurityStatistics, compute_statistics
from masterguard.utils.clock import Clock, utc_now


AlertHandler = Callable[[SecurityEvent], None]

_FLUSH_POLL_SECONDS: Final[float] = 0.5


class AuditSink(ABC):
    """Durable destination for event batches."""

    @abstractmethod
    def write_batch(self, events: list[SecurityEvent]) -> None:
        """
        Persist a batch.

        Raises:
            StorageError: If the batch could not be written
        """


class StoreAuditSink(AuditSink):
    """
    Writes every event to the ``security_logs`` append path and keeps
    critical events individually addressable under
    ``security_logs/critical/{event_id}``.
    """

    __slots__ = ("_store",)

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def write_batch(self, events: list[SecurityEvent]) -> None:
        for event in events:
            record = event.to_dict()
            self._store.append(SECURITY_LOGS_PATH, record)
            if event.level == SecurityEventLevel.CRITICAL:
                self._store.set(f"{SECURITY_LOGS_CRITICAL_PATH}/{event.id}", record)


class AlertStore:
    """
    Operator-facing alerts that stay open until acknowledged.

    Register an instance as an alert handler on the event log:

        alerts = AlertStore(store)
        event_log.add_alert_handler(alerts)
    """

    __slots__ = ("_store", "_clock")

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def __call__(self, event: SecurityEvent) -> None:
        self.create(event)

    @staticmethod
    def _path_for(alert_id: str) -> str:
        if not alert_id or "/" in alert_id:
            raise ValueError("Invalid alert id")
        return f"{SECURITY_ALERTS_PATH}/{alert_id}"

    def create(self, event: SecurityEvent) -> str:
        """Open an alert for a severe event; returns the alert id."""
        alert_id = f"alert_{uuid.uuid4().hex[:16]}"
        self._store.set(self._path_for(alert_id), {
            "id": alert_id,
            "eventId": event.id,
            "timestamp": event.timestamp.isoformat(),
            "type": event.type.value,
            "level": event.level.value,
            "message": event.message,
            "details": event.details,
            "userId": event.user_id,
            "acknowledged": False,
            "acknowledgedAt": None,
            "acknowledgedBy": None,
        })
        return alert_id

    def get(self, alert_id: str) -> Optional[dict[str, Any]]:
        return self._store.get(self._path_for(alert_id))

    def acknowledge(self, alert_id: str, operator: str) -> dict[str, Any]:
        """
        Mark an alert as handled. Acknowledging twice keeps the first
        acknowledgement.

        Raises:
            KeyError: If the alert does not exist
        """
        alert = self.get(alert_id)
        if alert is None:
            raise KeyError(alert_id)

        if not alert["acknowledged"]:
            alert["acknowledged"] = True
            alert["acknowledgedAt"] = self._clock().isoformat()
            alert["acknowledgedBy"] = operator
            self._store.set(self._path_for(alert_id), alert)

        return alert

    def list_unacknowledged(self) -> list[dict[str, Any]]:
        """Open alerts, newest first."""
        alerts = [a for a in self._store.list(SECURITY_ALERTS_PATH).values() if not a["acknowledged"]]
        return sorted(alerts, key=lambda a: a["timestamp"], reverse=True)


class SecurityEventLog:
    """
    Central security event log.

    Usage:
        event_log = SecurityEventLog(StoreAuditSink(store))
        event_log.add_alert_handler(AlertStore(store))
        event_log.start()

        event_log.log(
            SecurityEventType.LOGIN_FAILED,
            SecurityEventLevel.WARNING,
            "Invalid credentials",
            details={"identifier_hash": "..."},
        )

        event_log.stop()  # final flush

    Without ``start()`` the size threshold flushes inline and the time
    threshold is evaluated by calling ``tick()``.
    """

    __slots__ = (
        "_sink", "_batch_size", "_batch_timeout", "_clock",
        "_ring", "_pending", "_lock", "_flush_lock", "_alert_handlers",
        "_running", "_wake", "_flusher", "_failed_flushes", "_log",
    )

    def __init__(
        self,
        sink: AuditSink,
        batch_size: int = EVENT_BATCH_SIZE,
        batch_timeout_seconds: float = EVENT_BATCH_TIMEOUT_SECONDS,
        ring_capacity: int = EVENT_RING_CAPACITY,
        clock: Clock = utc_now,
    ) -> None:
        self._sink = sink
        self._batch_size = batch_size
        self._batch_timeout = timedelta(seconds=batch_timeout_seconds)
        self._clock = clock
        self._ring: deque[SecurityEvent] = deque(maxlen=ring_capacity)
        self._pending: list[SecurityEvent] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._alert_handlers: list[AlertHandler] = []
        self._running = False
        self._wake = threading.Event()
        self._flusher: Optional[threading.Thread] = None
        self._failed_flushes = 0
        self._log = logging.getLogger("masterguard.audit")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def log(
        self,
        event_type: SecurityEventType,
        level: SecurityEventLevel,
        message: str,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        ip: str = "unknown",
        user_agent: str = "unknown",
        session_id: Optional[str] = None,
    ) -> str:
        """
        Record an event.

        Returns:
            Event ID
        """
        event = SecurityEvent(
            type=event_type,
            level=level,
            message=message,
            timestamp=self._clock(),
            user_id=user_id,
            details=details or {},
            ip=ip,
            user_agent=user_agent,
            session_id=session_id,
        )

        with self._lock:
            self._ring.append(event)
            self._pending.append(event)
            batch_full = len(self._pending) >= self._batch_size

        if level.raises_alert:
            self._dispatch_alert(event)

        if batch_full:
            if self._running:
                self._wake.set()
            else:
                self.flush()

        return event.id

    def add_alert_handler(self, handler: AlertHandler) -> None:
        """Register a handler for error and critical events."""
        self._alert_handlers.append(handler)

    def _dispatch_alert(self, event: SecurityEvent) -> None:
        for handler in list(self._alert_handlers):
            try:
                handler(event)
            except Exception as e:
                self._log.error(
                    "Alert handler %s failed for %s: %s",
                    getattr(handler, "__name__", type(handler).__name__), event.id, e,
                )

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def failed_flushes(self) -> int:
        return self._failed_flushes

    def flush(self) -> int:
        """
        Write all pending events to the sink.

        Returns:
            Number of events written (0 on failure; the batch stays queued)
        """
        with self._flush_lock:
            with self._lock:
                batch, self._pending = self._pending, []

            if not batch:
                return 0

            try:
                self._sink.write_batch(batch)
            except Exception as e:
                # Sinks are external; any failure keeps the batch queued
                with self._lock:
                    self._pending[0:0] = batch
                self._failed_flushes += 1
                self._log.error(
                    "Security event flush failed, %d events requeued: %s",
                    len(batch), e,
                )
                return 0

            return len(batch)

    def tick(self) -> bool:
        """
        Evaluate the flush thresholds.

        Returns:
            True if a flush was attempted
        """
        with self._lock:
            if not self._pending:
                return False
            due = (
                len(self._pending) >= self._batch_size
                or self._clock() - self._pending[0].timestamp >= self._batch_timeout
            )

        if due:
            self.flush()
        return due

    def start(self) -> None:
        """Start the background flusher thread."""
        if self._running:
            return

        self._running = True
        self._wake.clear()
        self._flusher = threading.Thread(
            target=self._flush_loop,
            daemon=True,
            name="SecurityEventFlusher",
        )
        self._flusher.start()
        self._log.info("Security event flusher started")

    def stop(self) -> None:
        """Stop the flusher and write whatever is still pending."""
        self._running = False
        self._wake.set()
        if self._flusher:
            self._flusher.join(timeout=_FLUSH_POLL_SECONDS * 4)
            self._flusher = None
        self.flush()
        self._log.info("Security event flusher stopped")

    def _flush_loop(self) -> None:
        while self._running:
            self._wake.wait(timeout=_FLUSH_POLL_SECONDS)
            self._wake.clear()
            if not self._running:
                break
            try:
                self.tick()
            except Exception as e:
                self._log.error(f"Security event flusher error: {e}")

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(
        self,
        event_type: Optional[SecurityEventType] = None,
        level: Optional[SecurityEventLevel] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[SecurityEvent]:
        """Filtered events from the ring, newest first, capped at ``limit``."""
        if limit <= 0:
            return []

        with self._lock:
            snapshot = list(self._ring)

        results: list[SecurityEvent] = []
        for event in reversed(snapshot):
            if event_type and event.type != event_type:
                continue
            if level and event.level != level:
                continue
            if user_id and event.user_id != user_id:
                continue
            if since and event.timestamp < since:
                continue
            if until and event.timestamp > until:
                continue

            results.append(event)
            if len(results) >= limit:
                break

        return results

    def statistics(self, window: str = "24h", top_n: int = 5) -> SecurityStatistics:
        """
        Aggregate counts over a rolling window (1h, 24h, 7d or 30d).

        Raises:
            ValueError: If the window is unknown
        """
        with self._lock:
            snapshot = list(self._ring)
        return compute_statistics(snapshot, window, self._clock(), top_n=top_n)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ring)
