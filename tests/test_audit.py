"""
Unit tests for the security event log
"""
from datetime import timedelta

import pytest

from masterguard.db.store import StorageError
from masterguard.security.audit import (
    AlertStore,
    AuditSink,
    SecurityEventLog,
    StoreAuditSink,
)
from masterguard.security.events import SecurityEventLevel, SecurityEventType


class RecordingSink(AuditSink):
    def __init__(self, fail_times=0, error=None):
        self.batches = []
        self.fail_times = fail_times
        self.error = error or StorageError("sink offline")

    def write_batch(self, events):
        if self.fail_times:
            self.fail_times -= 1
            raise self.error
        self.batches.append(list(events))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def log(sink, clock):
    return SecurityEventLog(sink, clock=clock)


def emit(log, count, level=SecurityEventLevel.INFO, event_type=SecurityEventType.LOGIN_SUCCESS, **kwargs):
    return [log.log(event_type, level, f"event {i}", **kwargs) for i in range(count)]


class TestBatching:
    """Flush thresholds"""

    def test_flush_at_exactly_batch_size(self, log, sink):
        emit(log, 49)
        assert sink.batches == []

        emit(log, 1)
        assert len(sink.batches) == 1
        assert len(sink.batches[0]) == 50
        assert log.pending_count == 0

    def test_single_event_flushed_after_timeout(self, log, sink, clock):
        emit(log, 1)

        clock.advance(4.9)
        assert log.tick() is False
        assert sink.batches == []

        clock.advance(0.1)
        assert log.tick() is True
        assert [len(b) for b in sink.batches] == [1]

    def test_tick_with_nothing_pending(self, log, sink, clock):
        clock.advance(60)
        assert log.tick() is False

    def test_batch_preserves_order(self, log, sink):
        ids = emit(log, 50)
        assert [e.id for e in sink.batches[0]] == ids

    def test_failed_flush_requeues_batch_at_front(self, sink, clock):
        sink.fail_times = 1
        log = SecurityEventLog(sink, batch_size=3, clock=clock)

        first = emit(log, 3)
        assert sink.batches == []
        assert log.pending_count == 3
        assert log.failed_flushes == 1

        later = emit(log, 1)
        assert log.pending_count == 0
        assert [e.id for e in sink.batches[0]] == first + later

    def test_log_never_raises_on_sink_failure(self, clock):
        log = SecurityEventLog(RecordingSink(fail_times=10), batch_size=1, clock=clock)
        event_id = log.log(SecurityEventType.LOGOUT, SecurityEventLevel.INFO, "bye")
        assert event_id.startswith("evt_")

    def test_unexpected_sink_error_requeues(self, clock):
        sink = RecordingSink(fail_times=1, error=RuntimeError("sink connection reset"))
        log = SecurityEventLog(sink, batch_size=2, clock=clock)

        first = emit(log, 2)
        assert log.pending_count == 2
        assert log.failed_flushes == 1

        assert log.flush() == 2
        assert [e.id for e in sink.batches[0]] == first

    def test_direct_flush_keeps_batch_on_unexpected_error(self, clock):
        failing = SecurityEventLog(
            RecordingSink(fail_times=1, error=ConnectionResetError("peer gone")), clock=clock,
        )
        emit(failing, 1)

        assert failing.flush() == 0
        assert failing.pending_count == 1

    def test_log_never_raises_on_unexpected_sink_error(self, clock):
        sink = RecordingSink(fail_times=10, error=ValueError("bad payload"))
        log = SecurityEventLog(sink, batch_size=1, clock=clock)

        event_id = log.log(SecurityEventType.LOGOUT, SecurityEventLevel.INFO, "bye")
        assert event_id.startswith("evt_")
        assert log.pending_count == 1

    def test_stop_flushes_pending(self, log, sink):
        emit(log, 2)
        log.stop()
        assert [len(b) for b in sink.batches] == [2]

    def test_background_flusher_handles_size_threshold(self, sink, clock):
        log = SecurityEventLog(sink, batch_size=5, clock=clock)
        log.start()
        try:
            emit(log, 5)
        finally:
            log.stop()

        assert sum(len(b) for b in sink.batches) == 5


class TestAlerts:
    """Synchronous alert dispatch"""

    def test_only_severe_levels_alert(self, log):
        received = []
        log.add_alert_handler(received.append)

        log.log(SecurityEventType.LOGIN_FAILED, SecurityEventLevel.WARNING, "warn")
        log.log(SecurityEventType.ACCOUNT_LOCKED, SecurityEventLevel.ERROR, "err")
        log.log(SecurityEventType.SYSTEM_ERROR, SecurityEventLevel.CRITICAL, "crit")

        assert [e.level for e in received] == [SecurityEventLevel.ERROR, SecurityEventLevel.CRITICAL]

    def test_alert_does_not_wait_for_flush(self, log, sink):
        received = []
        log.add_alert_handler(received.append)
        log.log(SecurityEventType.UNAUTHORIZED_ACCESS, SecurityEventLevel.ERROR, "denied")

        assert len(received) == 1
        assert sink.batches == []

    def test_handler_failure_is_contained(self, log):
        received = []

        def broken(event):
            raise RuntimeError("pager down")

        log.add_alert_handler(broken)
        log.add_alert_handler(received.append)
        log.log(SecurityEventType.SYSTEM_ERROR, SecurityEventLevel.CRITICAL, "boom")

        assert len(received) == 1


class TestQuery:
    """Ring buffer queries"""

    def test_newest_first_with_limit(self, log, clock):
        ids = []
        for _ in range(5):
            ids.append(log.log(SecurityEventType.LOGIN_SUCCESS, SecurityEventLevel.INFO, "ok"))
            clock.advance(1)

        assert [e.id for e in log.query(limit=3)] == list(reversed(ids))[:3]

    def test_filters(self, log, clock):
        start = clock.now
        log.log(SecurityEventType.LOGIN_FAILED, SecurityEventLevel.WARNING, "a", user_id="u1")
        clock.advance(10)
        log.log(SecurityEventType.LOGIN_SUCCESS, SecurityEventLevel.INFO, "b", user_id="u1")
        clock.advance(10)
        log.log(SecurityEventType.LOGIN_SUCCESS, SecurityEventLevel.INFO, "c", user_id="u2")

        assert [e.message for e in log.query(event_type=SecurityEventType.LOGIN_SUCCESS)] == ["c", "b"]
        assert [e.message for e in log.query(user_id="u1")] == ["b", "a"]
        assert [e.message for e in log.query(level=SecurityEventLevel.WARNING)] == ["a"]
        assert [e.message for e in log.query(since=start + timedelta(seconds=5))] == ["c", "b"]
        assert [e.message for e in log.query(until=start + timedelta(seconds=10))] == ["b", "a"]

    def test_zero_limit(self, log):
        emit(log, 3)
        assert log.query(limit=0) == []

    def test_ring_evicts_oldest(self, sink, clock):
        log = SecurityEventLog(sink, batch_size=2, ring_capacity=3, clock=clock)
        ids = emit(log, 5)

        assert len(log) == 3
        assert [e.id for e in log.query()] == list(reversed(ids[2:]))

    def test_details_are_detached_from_caller(self, log):
        details = {"attempts": 1}
        log.log(SecurityEventType.LOGIN_FAILED, SecurityEventLevel.WARNING, "x", details=details)
        details["attempts"] = 99

        assert log.query()[0].details == {"attempts": 1}


class TestStoreAuditSink:
    """Persistence layout"""

    def test_events_appended_and_critical_indexed(self, store, clock):
        log = SecurityEventLog(StoreAuditSink(store), clock=clock)
        log.log(SecurityEventType.LOGIN_SUCCESS, SecurityEventLevel.INFO, "ok", user_id="u1")
        critical_id = log.log(SecurityEventType.SYSTEM_ERROR, SecurityEventLevel.CRITICAL, "boom")
        log.flush()

        entries = store.read_log("security_logs")
        assert [e["type"] for e in entries] == ["login_success", "system_error"]
        assert entries[0]["userId"] == "u1"
        assert entries[0]["timestamp"] == clock.now.isoformat()
        assert store.get(f"security_logs/critical/{critical_id}")["message"] == "boom"


class TestAlertStore:
    """Operator alerts"""

    def test_severe_events_open_alerts(self, event_log, alerts):
        event_log.log(SecurityEventType.ACCOUNT_LOCKED, SecurityEventLevel.ERROR, "locked")
        event_log.log(SecurityEventType.LOGIN_FAILED, SecurityEventLevel.WARNING, "nope")

        open_alerts = alerts.list_unacknowledged()
        assert [a["type"] for a in open_alerts] == ["account_locked"]
        assert open_alerts[0]["acknowledged"] is False

    def test_acknowledge(self, event_log, alerts, clock):
        event_log.log(SecurityEventType.SYSTEM_ERROR, SecurityEventLevel.CRITICAL, "boom")
        alert_id = alerts.list_unacknowledged()[0]["id"]

        clock.advance(30)
        acked = alerts.acknowledge(alert_id, "uid-1")

        assert acked["acknowledged"] is True
        assert acked["acknowledgedBy"] == "uid-1"
        assert acked["acknowledgedAt"] == clock.now.isoformat()
        assert alerts.list_unacknowledged() == []

    def test_second_acknowledge_keeps_first(self, event_log, alerts, clock):
        event_log.log(SecurityEventType.SYSTEM_ERROR, SecurityEventLevel.CRITICAL, "boom")
        alert_id = alerts.list_unacknowledged()[0]["id"]

        alerts.acknowledge(alert_id, "uid-1")
        clock.advance(30)
        assert alerts.acknowledge(alert_id, "uid-2")["acknowledgedBy"] == "uid-1"

    def test_unknown_alert(self, alerts):
        with pytest.raises(KeyError):
            alerts.acknowledge("alert_missing", "uid-1")

    def test_direct_registration(self, store, clock):
        alert_store = AlertStore(store, clock=clock)
        log = SecurityEventLog(StoreAuditSink(store), clock=clock)
        log.add_alert_handler(alert_store)

        log.log(SecurityEventType.UNAUTHORIZED_ACCESS, SecurityEventLevel.ERROR, "denied", user_id="u9")
        assert alert_store.list_unacknowledged()[0]["userId"] == "u9"
