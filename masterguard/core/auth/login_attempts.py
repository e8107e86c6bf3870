"""
Login Attempt Tracking
======================

Per-identifier failed-login counter with lockout.

Security Features:
- Identifiers are stored as one-way hashes, never as raw e-mail
- Lockout is plain data (``lock_until``) checked lazily on the next
  attempt; no timer exists per identifier
- An elapsed lockout restarts the counter instead of accumulating
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Optional

from masterguard.core.errors import MasterGuardError
from masterguard.core.models import FailureResult, LockStatus, LoginAttemptRecord
from masterguard.db.store import KeyValueStore
from masterguard.security.constants import (
    LOCKOUT_DURATION_SECONDS,
    LOGIN_ATTEMPTS_PATH,
    MAX_LOGIN_ATTEMPTS,
)
from masterguard.utils.clock import Clock, utc_now
from masterguard.utils.locks import StripedLock


class AccountLockedError(MasterGuardError):
    """Raised when account is locked due to failed attempts."""

    code = "account_locked"
    public_message = "Too many failed attempts. Try again later."
    status = 423

    def __init__(self, lock_until: datetime, now: Optional[datetime] = None) -> None:
        self.lock_until = lock_until
        remaining = (lock_until - (now or utc_now())).total_seconds()
        retry_after = max(0, math.ceil(remaining))
        super().__init__(
            f"Account locked. Try again in {retry_after} seconds.",
            retry_after=retry_after,
        )


def hash_identifier(identifier: str) -> str:
    """
    One-way hash of a login identifier.

    E-mail addresses are normalised (trimmed, lower-cased) first so
    ``User@X.ch`` and ``user@x.ch`` share one counter.
    """
    normalised = identifier.strip().lower()
    return hashlib.sha256(normalised.encode("utf-8")).hexdigest()


class LoginAttemptTracker:
    """
    Brute-force protection counter.

    Usage:
        tracker = LoginAttemptTracker(store)

        status = tracker.check_locked(email)
        if status.locked:
            raise AccountLockedError(status.lock_until)

        result = tracker.record_failure(email)   # on a bad password
        tracker.reset(email)                     # on success
    """

    __slots__ = ("_store", "_max_attempts", "_lockout", "_clock", "_locks", "_log")

    def __init__(
        self,
        store: KeyValueStore,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
        lockout_seconds: int = LOCKOUT_DURATION_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._lockout = timedelta(seconds=lockout_seconds)
        self._clock = clock
        self._locks = StripedLock()
        self._log = logging.getLogger("masterguard.auth.attempts")

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @staticmethod
    def _path_for(identifier: str) -> str:
        return f"{LOGIN_ATTEMPTS_PATH}/{hash_identifier(identifier)}"

    def _lock_for(self, identifier: str) -> threading.Lock:
        return self._locks.for_key(hash_identifier(identifier))

    def _load(self, identifier: str) -> Optional[LoginAttemptRecord]:
        record = self._store.get(self._path_for(identifier))
        return LoginAttemptRecord.from_record(record) if record else None

    def check_locked(self, identifier: str) -> LockStatus:
        """Pure read: is this identifier inside a lockout window?"""
        record = self._load(identifier)
        if record is not None and record.is_locked(self._clock()):
            return LockStatus(locked=True, lock_until=record.lock_until)
        return LockStatus(locked=False)

    def record_failure(self, identifier: str) -> FailureResult:
        """
        Count a failed login and engage the lock at the threshold.

        A failure arriving at or after an elapsed ``lock_until`` starts a
        fresh window with a count of 1.
        """
        with self._lock_for(identifier):
            now = self._clock()
            record = self._load(identifier) or LoginAttemptRecord()

            if record.lock_until is not None and now >= record.lock_until:
                record = LoginAttemptRecord()

            record.attempts += 1
            record.last_attempt = now

            if record.attempts >= self._max_attempts and not record.is_locked(now):
                record.lock_until = now + self._lockout
                self._log.warning(
                    "Lockout engaged for %s after %d failed attempts",
                    hash_identifier(identifier)[:12], record.attempts,
                )

            self._store.set(self._path_for(identifier), record.to_record())

        return FailureResult(
            attempts=record.attempts,
            locked=record.is_locked(now),
            lock_until=record.lock_until,
        )

    def reset(self, identifier: str) -> None:
        """Clear the record entirely (after a successful login)."""
        with self._lock_for(identifier):
            self._store.delete(self._path_for(identifier))

    def get_record(self, identifier: str) -> Optional[LoginAttemptRecord]:
        """Current record, or None if the identifier has no failures."""
        return self._load(identifier)
