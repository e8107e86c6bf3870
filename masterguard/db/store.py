"""
Keyed Store
===========

Storage-agnostic persistence used by sessions, login attempts and the
security event sinks.

Every record is addressed by a full slash-separated path such as
``sessions/master/<id>``. Values are JSON documents.

Security Considerations:
- Driver errors are wrapped in StorageError; their text never reaches
  clients
- All SQL uses parameterized queries
"""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, Iterator, Optional

from masterguard.core.errors import MasterGuardError


Document = dict[str, Any]


class StorageError(MasterGuardError):
    """Raised when a record cannot be read or written."""

    code = "storage_error"
    public_message = "Service temporarily unavailable"
    status = 503


def _validate_path(path: str) -> str:
    if not path or path.startswith("/") or path.endswith("/") or "//" in path:
        raise ValueError(f"Invalid store path: {path!r}")
    return path


class KeyValueStore(ABC):
    """
    Minimal keyed store contract.

    Any backend offering these primitives (SQL table, embedded KV,
    distributed cache) can hold session and attempt state.
    """

    @abstractmethod
    def get(self, path: str) -> Optional[Document]:
        """Return the document at ``path`` or None."""

    @abstractmethod
    def set(self, path: str, value: Document) -> None:
        """Replace the document at ``path``."""

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Remove the document at ``path``; True if it existed."""

    @abstractmethod
    def append(self, path: str, value: Document) -> str:
        """Append a document to the log at ``path``; returns its id."""

    @abstractmethod
    def list(self, prefix: str) -> dict[str, Document]:
        """Return every keyed document directly under ``prefix``."""

    @abstractmethod
    def read_log(self, path: str, limit: Optional[int] = None) -> list[Document]:
        """Return appended documents in insertion order."""


class MemoryStore(KeyValueStore):
    """
    Thread-safe in-process store.

    Documents are copied on the way in and out so callers can never
    mutate stored state by reference.
    """

    __slots__ = ("_data", "_logs", "_lock")

    def __init__(self) -> None:
        self._data: dict[str, Document] = {}
        self._logs: dict[str, list[Document]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _copy(value: Document) -> Document:
        try:
            return json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Document is not JSON serializable: {e}") from e

    def get(self, path: str) -> Optional[Document]:
        with self._lock:
            value = self._data.get(_validate_path(path))
            return copy.deepcopy(value) if value is not None else None

    def set(self, path: str, value: Document) -> None:
        stored = self._copy(value)
        with self._lock:
            self._data[_validate_path(path)] = stored

    def delete(self, path: str) -> bool:
        with self._lock:
            return self._data.pop(_validate_path(path), None) is not None

    def append(self, path: str, value: Document) -> str:
        stored = self._copy(value)
        entry_id = uuid.uuid4().hex
        stored["_id"] = entry_id
        with self._lock:
            self._logs.setdefault(_validate_path(path), []).append(stored)
        return entry_id

    def list(self, prefix: str) -> dict[str, Document]:
        base = _validate_path(prefix) + "/"
        with self._lock:
            return {
                path[len(base):]: copy.deepcopy(value)
                for path, value in self._data.items()
                if path.startswith(base) and "/" not in path[len(base):]
            }

    def read_log(self, path: str, limit: Optional[int] = None) -> list[Document]:
        with self._lock:
            entries = self._logs.get(_validate_path(path), [])
            selected = entries if limit is None else entries[:limit]
            return copy.deepcopy(selected)


class SqliteStore(KeyValueStore):
    """
    Keyed store with SQLite backend.

    Usage:
        store = SqliteStore(config.paths.database_path)
        store.set("sessions/master/abc", {...})

    A connection is opened per operation, so the store is safe to share
    between the request threads, session monitors and the event flusher.
    The busy timeout bounds how long any call may block.
    """

    __slots__ = ("_db_path", "_timeout")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS documents (
        path TEXT PRIMARY KEY,
        parent TEXT NOT NULL,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_documents_parent ON documents(parent);

    CREATE TABLE IF NOT EXISTS log_entries (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        path TEXT NOT NULL,
        value TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_log_entries_path ON log_entries(path);
    """

    def __init__(self, db_path: Path | str, timeout_seconds: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout_seconds
        self.initialize_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close."""
        try:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open store: {e}") from e

        try:
            conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Store operation failed: {e}") from e
        finally:
            conn.close()

    def initialize_db(self) -> None:
        """Initialize the database schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript(self._SCHEMA)

    @staticmethod
    def _encode(value: Document) -> str:
        try:
            return json.dumps(value, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Document is not JSON serializable: {e}") from e

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def get(self, path: str) -> Optional[Document]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM documents WHERE path = ?",
                (_validate_path(path),),
            ).fetchone()

        if not row:
            return None
        return json.loads(row["value"])

    def set(self, path: str, value: Document) -> None:
        path = _validate_path(path)
        parent = path.rsplit("/", 1)[0] if "/" in path else ""
        encoded = self._encode(value)

        with self._connection() as conn:
            conn.execute("""
                INSERT INTO documents (path, parent, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (path, parent, encoded, self._now()))

    def delete(self, path: str) -> bool:
        with self._connection() as conn:
            result = conn.execute(
                "DELETE FROM documents WHERE path = ?",
                (_validate_path(path),),
            )
            return result.rowcount > 0

    def append(self, path: str, value: Document) -> str:
        entry_id = uuid.uuid4().hex
        stored = dict(value, _id=entry_id)

        with self._connection() as conn:
            conn.execute("""
                INSERT INTO log_entries (id, path, value, created_at)
                VALUES (?, ?, ?, ?)
            """, (entry_id, _validate_path(path), self._encode(stored), self._now()))

        return entry_id

    def list(self, prefix: str) -> dict[str, Document]:
        prefix = _validate_path(prefix)
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT path, value FROM documents WHERE parent = ? ORDER BY path",
                (prefix,),
            ).fetchall()

        return {
            row["path"][len(prefix) + 1:]: json.loads(row["value"])
            for row in rows
        }

    def read_log(self, path: str, limit: Optional[int] = None) -> list[Document]:
        query = "SELECT value FROM log_entries WHERE path = ? ORDER BY seq ASC"
        params: tuple[Any, ...] = (_validate_path(path),)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [json.loads(row["value"]) for row in rows]
