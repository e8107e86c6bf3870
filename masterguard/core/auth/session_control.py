"""
Session Control
================

Master session lifecycle with automatic expiration.

Security Features:
- Cryptographically random session tokens
- Tokens encrypted at rest (AES-256-GCM, bound to the session id)
- Sliding expiration on activity, never revived once ended
- Per-session write serialisation
- Background expiry monitor per session
"""

from __future__ import annotations

import logging
import secrets
import threading
import uuid
from datetime import timedelta
from typing import Callable, Optional

from masterguard.core.crypto import TokenCipher, TokenDecryptionError
from masterguard.core.errors import MasterGuardError
from masterguard.core.models import Principal, Session, SessionContext, SessionState
from masterguard.db.session_store import SessionStore
from masterguard.security.audit import SecurityEventLog
from masterguard.security.constants import (
    MONITOR_INTERVAL_SECONDS,
    SESSION_TIMEOUT_SECONDS,
    SESSION_TOKEN_BYTES,
)
from masterguard.security.events import SecurityEventLevel, SecurityEventType
from masterguard.utils.clock import Clock, utc_now
from masterguard.utils.locks import StripedLock


ExpiryCallback = Callable[[str, str], None]

REASON_EXPIRED = "expired"
REASON_LOGOUT = "logout"


class SessionError(MasterGuardError):
    """Base exception for session errors."""

    code = "session_error"
    public_message = "Session is not valid"
    status = 401


class SessionExpiredError(SessionError):
    """Raised when a session has expired or was ended."""

    code = "session_expired"
    public_message = "Session expired"


class SessionNotFoundError(SessionError):
    """Raised when a session does not exist or its token does not match."""

    code = "session_not_found"
    public_message = "Session not found"


class SessionManager:
    """
    Master session management over a keyed store.

    Usage:
        manager = SessionManager(SessionStore(store), cipher, event_log)

        # After successful authentication
        session, token = manager.create(principal, context)

        # On user activity
        manager.touch(session.session_id)

        # On every request
        manager.verify_token(session_id, token)

        # Logout
        manager.terminate(session.session_id, "logout")

    Security Notes:
        - Tokens carry 384 bits of entropy
        - Only the encrypted token is persisted; the plaintext leaves
          this class once, as the return value of ``create``
        - Ended sessions are never reactivated
    """

    __slots__ = (
        "_sessions", "_cipher", "_events", "_timeout", "_clock",
        "_locks", "_log",
    )

    def __init__(
        self,
        sessions: SessionStore,
        cipher: TokenCipher,
        event_log: SecurityEventLog,
        timeout_seconds: int = SESSION_TIMEOUT_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._sessions = sessions
        self._cipher = cipher
        self._events = event_log
        self._timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock
        self._locks = StripedLock()
        self._log = logging.getLogger("masterguard.auth.session")

    @property
    def timeout(self) -> timedelta:
        return self._timeout

    def _lock_for(self, session_id: str) -> threading.Lock:
        return self._locks.for_key(session_id)

    @staticmethod
    def _aad(session_id: str) -> bytes:
        return session_id.encode("utf-8")

    def create(
        self,
        principal: Principal,
        context: Optional[SessionContext] = None,
    ) -> tuple[Session, str]:
        """
        Create and persist a new session.

        Returns:
            (session, plaintext token)

        Raises:
            StorageError: If the session could not be persisted
        """
        context = context or SessionContext()
        now = self._clock()
        session_id = str(uuid.uuid4())
        token = secrets.token_urlsafe(SESSION_TOKEN_BYTES)

        session = Session(
            session_id=session_id,
            user_id=principal.id,
            email=principal.email,
            user_agent=context.user_agent,
            ip=context.ip,
            start_time=now,
            last_activity=now,
            expires_at=now + self._timeout,
            session_token=self._cipher.encrypt(token, aad=self._aad(session_id)),
            active=True,
            state=SessionState.CREATED,
        )

        with self._lock_for(session_id):
            self._sessions.save(session)
            session.state = SessionState.ACTIVE
            self._sessions.save(session)

        self._events.log(
            SecurityEventType.SESSION_CREATED,
            SecurityEventLevel.INFO,
            "Master session created",
            user_id=principal.id,
            details={"expires_at": session.expires_at.isoformat()},
            ip=context.ip,
            user_agent=context.user_agent,
            session_id=session_id,
        )
        self._log.info(
            "Session %s created for user %s", session_id, principal.id,
            extra={"session_id": session_id, "user_id": principal.id},
        )

        return session, token

    def get(self, session_id: str) -> Optional[Session]:
        """Stored session, or None."""
        return self._sessions.get(session_id)

    def list_active(self) -> list[Session]:
        """Sessions that are active and not yet past their deadline."""
        now = self._clock()
        return [s for s in self._sessions.list_all() if s.is_valid(now)]

    def touch(self, session_id: str) -> Session:
        """
        Record activity and slide the expiry window forward.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionExpiredError: If the session is inactive or expired
        """
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(f"Session {session_id} not found")

            now = self._clock()
            if not session.is_valid(now):
                raise SessionExpiredError(f"Session {session_id} expired")

            session.last_activity = now
            session.expires_at = now + self._timeout
            session.state = SessionState.EXTENDED
            self._sessions.save(session)

        return session

    def validate(self, session_id: str) -> bool:
        """Read-only validity check."""
        session = self._sessions.get(session_id)
        return session is not None and session.is_valid(self._clock())

    def verify_token(self, session_id: str, token: str) -> Session:
        """
        Check a presented token against the stored one.

        Raises:
            SessionNotFoundError: If the session is unknown or the token
                does not match
            SessionExpiredError: If the session is inactive or expired
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        try:
            stored = self._cipher.decrypt(session.session_token, aad=self._aad(session_id))
        except TokenDecryptionError:
            stored = None

        if stored is None or not TokenCipher.constant_time_compare(stored, token or ""):
            self._events.log(
                SecurityEventType.SESSION_INVALID,
                SecurityEventLevel.WARNING,
                "Session token mismatch",
                user_id=session.user_id,
                session_id=session_id,
            )
            raise SessionNotFoundError(f"Token mismatch for session {session_id}")

        if not session.is_valid(self._clock()):
            raise SessionExpiredError(f"Session {session_id} expired")

        return session

    def terminate(self, session_id: str, reason: str) -> Session:
        """
        End a session.

        Idempotent: ending an already-ended session returns the stored
        record unchanged.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(f"Session {session_id} not found")

            if not session.active:
                return session

            now = self._clock()
            session.active = False
            session.end_time = now
            session.end_reason = reason
            session.state = (
                SessionState.EXPIRED if reason == REASON_EXPIRED else SessionState.LOGGED_OUT
            )
            self._sessions.save(session)

        self._events.log(
            SecurityEventType.SESSION_ENDED,
            SecurityEventLevel.INFO,
            f"Master session ended ({reason})",
            user_id=session.user_id,
            details={"reason": reason},
            ip=session.ip,
            user_agent=session.user_agent,
            session_id=session_id,
        )
        self._log.info(
            "Session %s ended: %s", session_id, reason,
            extra={"session_id": session_id, "user_id": session.user_id},
        )

        return session


class SessionMonitor:
    """
    Background expiry check for one session.

    Polls ``validate`` every ``interval`` seconds; on the first failed
    check it terminates the session with reason ``expired``, invokes
    ``on_expired(session_id, reason)`` and stops. Expiry is noticed at
    most one interval plus one store round-trip late.
    """

    __slots__ = (
        "_manager", "_session_id", "_interval", "_on_expired",
        "_stop_event", "_thread", "_running", "_log",
    )

    def __init__(
        self,
        manager: SessionManager,
        session_id: str,
        interval_seconds: float = MONITOR_INTERVAL_SECONDS,
        on_expired: Optional[ExpiryCallback] = None,
    ) -> None:
        self._manager = manager
        self._session_id = session_id
        self._interval = interval_seconds
        self._on_expired = on_expired
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._log = logging.getLogger("masterguard.auth.monitor")

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the monitoring thread."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._monitor_loop,
            daemon=True,
            name=f"SessionMonitor-{self._session_id[:8]}",
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the monitoring thread; returns once it has exited."""
        self._running = False
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread and thread is not threading.current_thread():
            thread.join()

    def check_once(self) -> bool:
        """
        Perform a single expiry check.

        Returns:
            True if the session was found expired and has been ended
        """
        if self._manager.validate(self._session_id):
            return False

        try:
            self._manager.terminate(self._session_id, REASON_EXPIRED)
        except SessionNotFoundError:
            self._log.warning("Monitored session %s no longer exists", self._session_id)

        self._running = False
        self._stop_event.set()

        if self._on_expired:
            try:
                self._on_expired(self._session_id, REASON_EXPIRED)
            except Exception as e:
                self._log.error(f"Expiry callback failed for {self._session_id}: {e}")

        return True

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                if self.check_once():
                    break
            except Exception as e:
                self._log.error(f"Session monitoring error: {e}")
