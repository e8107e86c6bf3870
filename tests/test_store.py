"""
Unit tests for the keyed stores and the session store adapter
"""
import sqlite3

import pytest

from masterguard.core.models import Session, SessionState
from masterguard.db import MemoryStore, SessionStore, SqliteStore, StorageError


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(tmp_path / "store.db")


class TestKeyValueStore:
    """Behaviour shared by every backend"""

    def test_set_get_delete(self, any_store):
        any_store.set("users/abc", {"id": "1", "roles": ["master"]})

        assert any_store.get("users/abc") == {"id": "1", "roles": ["master"]}
        assert any_store.delete("users/abc") is True
        assert any_store.get("users/abc") is None
        assert any_store.delete("users/abc") is False

    def test_set_replaces(self, any_store):
        any_store.set("loginAttempts/h", {"attempts": 1})
        any_store.set("loginAttempts/h", {"attempts": 2})
        assert any_store.get("loginAttempts/h") == {"attempts": 2}

    def test_list_direct_children_only(self, any_store):
        any_store.set("security_logs/critical/e1", {"n": 1})
        any_store.set("security_logs/critical/e2", {"n": 2})
        any_store.set("security_logs/critical/deeper/e3", {"n": 3})
        any_store.set("security_alerts/a1", {"n": 4})

        assert any_store.list("security_logs/critical") == {"e1": {"n": 1}, "e2": {"n": 2}}

    def test_append_and_read_log(self, any_store):
        first = any_store.append("security_logs", {"type": "login_success"})
        second = any_store.append("security_logs", {"type": "logout"})

        entries = any_store.read_log("security_logs")
        assert [e["type"] for e in entries] == ["login_success", "logout"]
        assert [e["_id"] for e in entries] == [first, second]
        assert len(any_store.read_log("security_logs", limit=1)) == 1

    def test_returned_documents_are_copies(self, any_store):
        any_store.set("users/abc", {"roles": ["master"]})
        any_store.get("users/abc")["roles"].append("root")
        assert any_store.get("users/abc") == {"roles": ["master"]}

    def test_invalid_paths(self, any_store):
        for bad in ("", "/users", "users/", "users//x"):
            with pytest.raises(ValueError):
                any_store.get(bad)

    def test_unserializable_document(self, any_store):
        with pytest.raises(StorageError):
            any_store.set("users/abc", {"value": object()})


class TestSqliteStore:
    def test_driver_errors_become_storage_errors(self, tmp_path):
        store = SqliteStore(tmp_path / "store.db")
        with sqlite3.connect(tmp_path / "store.db") as conn:
            conn.execute("DROP TABLE documents")

        with pytest.raises(StorageError) as exc_info:
            store.get("users/abc")
        assert exc_info.value.to_dict()["message"] == "Service temporarily unavailable"

    def test_persists_across_instances(self, tmp_path):
        SqliteStore(tmp_path / "store.db").set("users/abc", {"id": "1"})
        assert SqliteStore(tmp_path / "store.db").get("users/abc") == {"id": "1"}


class TestSessionStore:
    """Session record mapping"""

    def test_round_trip(self, any_store, sessions, principal):
        session, token = sessions.create(principal)
        adapter = SessionStore(any_store)

        adapter.save(session)
        loaded = adapter.get(session.session_id)

        assert loaded == session
        assert loaded.session_token != token

    def test_record_layout(self, store, sessions, principal):
        session, _ = sessions.create(principal)
        record = store.get(f"sessions/master/{session.session_id}")

        assert set(record) == {
            "sessionId", "userId", "email", "userAgent", "ip", "startTime",
            "lastActivity", "expiresAt", "active", "sessionToken", "state",
            "endTime", "endReason",
        }
        assert record["state"] == SessionState.ACTIVE.value

    def test_missing(self, store):
        assert SessionStore(store).get("nope") is None

    def test_rejects_nested_ids(self, store):
        with pytest.raises(ValueError):
            SessionStore(store).get("a/b")

    def test_list_all(self, store, sessions, principal):
        sessions.create(principal)
        sessions.create(principal)
        assert all(isinstance(s, Session) for s in SessionStore(store).list_all())
        assert len(SessionStore(store).list_all()) == 2
