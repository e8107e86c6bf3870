"""
Database module - Data persistence and storage components.

Security Considerations:
- Session tokens are only ever persisted encrypted
- Login identifiers are only ever persisted hashed
- Storage failures surface as StorageError, never as driver errors
"""

from masterguard.db.store import (
    KeyValueStore,
    MemoryStore,
    SqliteStore,
    StorageError,
)
from masterguard.db.session_store import SessionStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "SqliteStore",
    "StorageError",
    "SessionStore",
]
