"""
Session Store Adapter
=====================

Maps Session objects onto ``sessions/master/{session_id}`` records in a
keyed store. The token field is persisted exactly as given, which is
always the encrypted form.
"""

from __future__ import annotations

from typing import Optional

from masterguard.core.models import Session
from masterguard.db.store import KeyValueStore
from masterguard.security.constants import SESSIONS_PATH


class SessionStore:
    """get/set/delete of master session records."""

    __slots__ = ("_store",)

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def path_for(session_id: str) -> str:
        if not session_id or "/" in session_id:
            raise ValueError("Invalid session id")
        return f"{SESSIONS_PATH}/{session_id}"

    def get(self, session_id: str) -> Optional[Session]:
        record = self._store.get(self.path_for(session_id))
        if record is None:
            return None
        return Session.from_record(record)

    def save(self, session: Session) -> None:
        self._store.set(self.path_for(session.session_id), session.to_record())

    def delete(self, session_id: str) -> bool:
        return self._store.delete(self.path_for(session_id))

    def list_all(self) -> list[Session]:
        return [Session.from_record(record) for record in self._store.list(SESSIONS_PATH).values()]
