"""
Unit tests for session management and the expiry monitor
"""
import threading
import time
from datetime import timedelta

import pytest

from masterguard.core.auth.session_control import (
    SessionExpiredError,
    SessionManager,
    SessionMonitor,
    SessionNotFoundError,
)
from masterguard.db import MemoryStore, SessionStore
from masterguard.core.models import SessionContext, SessionState
from masterguard.security.events import SecurityEventType
from masterguard.utils.locks import DEFAULT_STRIPES


def ended_events(event_log):
    return event_log.query(event_type=SecurityEventType.SESSION_ENDED)


class TestCreate:
    """Session creation"""

    def test_initial_fields(self, sessions, principal, clock):
        session, token = sessions.create(principal, SessionContext(ip="10.0.0.5", user_agent="pytest"))

        assert session.user_id == principal.id
        assert session.email == principal.email
        assert session.ip == "10.0.0.5"
        assert session.user_agent == "pytest"
        assert session.start_time == session.last_activity == clock.now
        assert session.expires_at == clock.now + timedelta(minutes=30)
        assert session.active is True
        assert session.state is SessionState.ACTIVE
        assert len(token) >= 64

    def test_token_is_stored_encrypted(self, sessions, principal, store):
        session, token = sessions.create(principal)

        record = store.get(f"sessions/master/{session.session_id}")
        assert record["sessionToken"] != token
        assert token not in repr(record)
        assert record["sessionToken"].startswith("v1.")

    def test_reads_never_return_plaintext(self, sessions, principal):
        session, token = sessions.create(principal)

        assert sessions.get(session.session_id).session_token != token
        assert token not in repr(sessions.get(session.session_id))

    def test_session_ids_are_unique(self, sessions, principal):
        first, _ = sessions.create(principal)
        second, _ = sessions.create(principal)
        assert first.session_id != second.session_id

    def test_logs_session_created(self, sessions, principal, event_log):
        session, _ = sessions.create(principal)

        events = event_log.query(event_type=SecurityEventType.SESSION_CREATED)
        assert [e.session_id for e in events] == [session.session_id]


class TestTouch:
    """Sliding expiration"""

    def test_touch_resets_full_window(self, sessions, principal, clock):
        session, _ = sessions.create(principal)

        clock.advance(10 * 60)
        touched = sessions.touch(session.session_id)

        assert touched.last_activity == clock.now
        assert touched.expires_at == clock.now + timedelta(minutes=30)
        assert touched.state is SessionState.EXTENDED
        assert sessions.get(session.session_id).expires_at == touched.expires_at

    def test_touch_missing_session(self, sessions):
        with pytest.raises(SessionNotFoundError):
            sessions.touch("does-not-exist")

    def test_touch_never_revives_expired(self, sessions, principal, clock):
        session, _ = sessions.create(principal)
        clock.advance(30 * 60)

        with pytest.raises(SessionExpiredError):
            sessions.touch(session.session_id)

    def test_touch_never_revives_terminated(self, sessions, principal):
        session, _ = sessions.create(principal)
        sessions.terminate(session.session_id, "logout")

        with pytest.raises(SessionExpiredError):
            sessions.touch(session.session_id)
        assert sessions.get(session.session_id).active is False


class TestValidate:
    """Read-only validity"""

    def test_valid_until_deadline(self, sessions, principal, clock):
        session, _ = sessions.create(principal)

        clock.advance(30 * 60 - 1)
        assert sessions.validate(session.session_id) is True

        clock.advance(1)
        assert sessions.validate(session.session_id) is False

    def test_missing_session_is_invalid(self, sessions):
        assert sessions.validate("does-not-exist") is False

    def test_validate_does_not_write(self, sessions, principal, clock):
        session, _ = sessions.create(principal)
        clock.advance(60)
        sessions.validate(session.session_id)

        assert sessions.get(session.session_id).last_activity == session.last_activity


class TestTerminate:
    """Ending sessions"""

    def test_terminate_marks_inactive(self, sessions, principal, clock, event_log):
        session, _ = sessions.create(principal)
        clock.advance(5)

        ended = sessions.terminate(session.session_id, "logout")

        assert ended.active is False
        assert ended.end_time == clock.now
        assert ended.end_reason == "logout"
        assert ended.state is SessionState.LOGGED_OUT
        assert [e.details["reason"] for e in ended_events(event_log)] == ["logout"]

    def test_terminate_is_idempotent(self, sessions, principal, clock, event_log):
        session, _ = sessions.create(principal)
        first = sessions.terminate(session.session_id, "logout")

        clock.advance(60)
        second = sessions.terminate(session.session_id, "logout")

        assert second.end_time == first.end_time
        assert second.end_reason == "logout"
        assert len(ended_events(event_log)) == 1

    def test_expired_reason_sets_expired_state(self, sessions, principal):
        session, _ = sessions.create(principal)
        assert sessions.terminate(session.session_id, "expired").state is SessionState.EXPIRED

    def test_terminate_missing_session(self, sessions):
        with pytest.raises(SessionNotFoundError):
            sessions.terminate("does-not-exist", "logout")


class SlowReadStore(MemoryStore):
    """Widens the gap between a manager's read and its write."""

    def get(self, path):
        value = super().get(path)
        time.sleep(0.02)
        return value


class TestConcurrentWrites:
    """Per-session write serialisation"""

    def race(self, *targets):
        start = threading.Barrier(len(targets))
        outcomes = []

        def worker(target):
            start.wait()
            try:
                outcomes.append(target())
            except SessionExpiredError as e:
                outcomes.append(e)

        threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return outcomes

    def test_touch_cannot_resurrect_terminated_session(self, cipher, event_log, principal, clock):
        manager = SessionManager(SessionStore(SlowReadStore()), cipher, event_log, clock=clock)
        session, _ = manager.create(principal)
        sid = session.session_id

        touches = [lambda: manager.touch(sid)] * 6
        self.race(lambda: manager.terminate(sid, "logout"), *touches)

        stored = manager.get(sid)
        assert stored.active is False
        assert stored.state is SessionState.LOGGED_OUT
        assert stored.end_time == clock.now
        assert len(ended_events(event_log)) == 1

    def test_late_touch_leaves_end_time_alone(self, cipher, event_log, principal, clock):
        manager = SessionManager(SessionStore(SlowReadStore()), cipher, event_log, clock=clock)
        session, _ = manager.create(principal)
        sid = session.session_id
        ended = manager.terminate(sid, "logout")

        clock.advance(30)
        outcomes = self.race(*[lambda: manager.touch(sid)] * 4)

        assert all(isinstance(o, SessionExpiredError) for o in outcomes)
        stored = manager.get(sid)
        assert stored.end_time == ended.end_time
        assert stored.expires_at == ended.expires_at

    def test_lock_pool_does_not_grow(self, sessions):
        for i in range(200):
            with pytest.raises(SessionNotFoundError):
                sessions.touch(f"missing-{i}")
            with pytest.raises(SessionNotFoundError):
                sessions.terminate(f"missing-{i}", "logout")

        assert len(sessions._locks) == DEFAULT_STRIPES


class TestVerifyToken:
    """Request-time token checks"""

    def test_correct_token(self, sessions, principal):
        session, token = sessions.create(principal)
        assert sessions.verify_token(session.session_id, token).session_id == session.session_id

    def test_wrong_token(self, sessions, principal, event_log):
        session, _ = sessions.create(principal)

        with pytest.raises(SessionNotFoundError):
            sessions.verify_token(session.session_id, "not-the-token")
        assert event_log.query(event_type=SecurityEventType.SESSION_INVALID)

    def test_token_from_another_session_is_rejected(self, sessions, principal):
        first, _ = sessions.create(principal)
        _, other_token = sessions.create(principal)

        with pytest.raises(SessionNotFoundError):
            sessions.verify_token(first.session_id, other_token)

    def test_ciphertext_moved_between_records_fails(self, sessions, principal, store):
        first, _ = sessions.create(principal)
        second, second_token = sessions.create(principal)

        record = store.get(f"sessions/master/{first.session_id}")
        record["sessionToken"] = store.get(f"sessions/master/{second.session_id}")["sessionToken"]
        store.set(f"sessions/master/{first.session_id}", record)

        with pytest.raises(SessionNotFoundError):
            sessions.verify_token(first.session_id, second_token)

    def test_expired_session(self, sessions, principal, clock):
        session, token = sessions.create(principal)
        clock.advance(31 * 60)

        with pytest.raises(SessionExpiredError):
            sessions.verify_token(session.session_id, token)

    def test_missing_session(self, sessions):
        with pytest.raises(SessionNotFoundError):
            sessions.verify_token("does-not-exist", "token")


class TestListActive:
    def test_only_valid_sessions(self, sessions, principal, clock):
        ended, _ = sessions.create(principal)
        sessions.terminate(ended.session_id, "logout")
        clock.advance(20 * 60)
        live, _ = sessions.create(principal)

        assert [s.session_id for s in sessions.list_active()] == [live.session_id]


class TestSessionMonitor:
    """Background expiry"""

    def test_check_once_on_valid_session(self, sessions, principal):
        session, _ = sessions.create(principal)
        monitor = SessionMonitor(sessions, session.session_id)

        assert monitor.check_once() is False
        assert sessions.get(session.session_id).active is True

    def test_expiry_ends_session(self, sessions, principal, clock, event_log):
        session, _ = sessions.create(principal)
        expired = []
        monitor = SessionMonitor(
            sessions,
            session.session_id,
            on_expired=lambda sid, reason: expired.append((sid, reason)),
        )

        clock.advance(30 * 60 + 30)
        assert monitor.check_once() is True

        stored = sessions.get(session.session_id)
        assert stored.active is False
        assert stored.state is SessionState.EXPIRED
        assert expired == [(session.session_id, "expired")]

        events = ended_events(event_log)
        assert len(events) == 1
        assert events[0].details["reason"] == "expired"

    def test_missing_session_still_reports_expiry(self, sessions):
        expired = []
        monitor = SessionMonitor(sessions, "gone", on_expired=lambda sid, reason: expired.append(sid))

        assert monitor.check_once() is True
        assert expired == ["gone"]

    def test_callback_errors_are_contained(self, sessions, principal, clock):
        session, _ = sessions.create(principal)

        def explode(sid, reason):
            raise RuntimeError("callback failed")

        monitor = SessionMonitor(sessions, session.session_id, on_expired=explode)
        clock.advance(31 * 60)

        assert monitor.check_once() is True

    def test_thread_detects_expiry(self, sessions, principal, clock):
        session, _ = sessions.create(principal)
        clock.advance(31 * 60)

        done = threading.Event()
        monitor = SessionMonitor(
            sessions,
            session.session_id,
            interval_seconds=0.01,
            on_expired=lambda sid, reason: done.set(),
        )
        monitor.start()
        try:
            assert done.wait(timeout=5)
        finally:
            monitor.stop()

        assert monitor.is_running is False
        assert sessions.get(session.session_id).active is False

    def test_stop_joins_thread(self, sessions, principal):
        session, _ = sessions.create(principal)
        monitor = SessionMonitor(sessions, session.session_id, interval_seconds=60)

        monitor.start()
        assert monitor.is_running is True
        monitor.stop()

        assert monitor.is_running is False
        assert sessions.get(session.session_id).active is True
