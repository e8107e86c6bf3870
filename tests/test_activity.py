"""
Unit tests for the debounced activity watcher
"""
from datetime import timedelta

import pytest

from masterguard.core.auth.activity import ActivityWatcher


@pytest.fixture
def session(sessions, principal):
    created, _ = sessions.create(principal)
    return created


@pytest.fixture
def watcher(sessions, session, clock):
    w = ActivityWatcher(sessions, session.session_id, clock=clock)
    w.start()
    return w


class TestActivityWatcher:
    """Debounce and expiry handling"""

    def test_first_signal_is_forwarded(self, watcher, sessions, session, clock):
        clock.advance(60)
        assert watcher.notify("pointer") is True
        assert sessions.get(session.session_id).expires_at == clock.now + timedelta(minutes=30)

    def test_signals_inside_window_are_dropped(self, watcher, clock):
        assert watcher.notify("key") is True
        clock.advance(3)
        assert watcher.notify("scroll") is False
        clock.advance(2)
        assert watcher.notify("touch") is False

    def test_signal_after_window_is_forwarded(self, watcher, clock):
        watcher.notify("key")
        clock.advance(5.5)
        assert watcher.notify("key") is True

    def test_unknown_signal(self, watcher):
        with pytest.raises(ValueError):
            watcher.notify("resize")

    def test_stopped_watcher_ignores_signals(self, watcher, sessions, session, clock):
        watcher.stop()
        clock.advance(60)

        assert watcher.notify("key") is False
        assert sessions.get(session.session_id).last_activity == session.last_activity

    def test_not_started_watcher_ignores_signals(self, sessions, session, clock):
        idle = ActivityWatcher(sessions, session.session_id, clock=clock)
        assert idle.notify("key") is False

    def test_expired_session_stops_watcher(self, sessions, session, clock):
        expired = []
        w = ActivityWatcher(
            sessions,
            session.session_id,
            clock=clock,
            on_expired=lambda sid, reason: expired.append((sid, reason)),
        )
        w.start()

        clock.advance(31 * 60)

        assert w.notify("key") is False
        assert w.is_running is False
        assert expired == [(session.session_id, "expired")]

    def test_activity_keeps_session_alive(self, watcher, sessions, session, clock):
        for _ in range(4):
            clock.advance(20 * 60)
            assert watcher.notify("pointer") is True

        assert sessions.validate(session.session_id) is True
