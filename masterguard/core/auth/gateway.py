"""
Auth Gateway
============

Entry point for master login and logout.

Security Features:
- Lockout checked before the credential verifier is ever called
- One generic failure for unknown user and wrong password
- Role check after verification, with identity-provider sign-out on denial
- Every authentication outcome recorded as a security event
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from masterguard.core.auth.activity import ActivityWatcher
from masterguard.core.auth.credentials import (
    CredentialVerifier,
    InvalidCredentialsError,
    UnauthorizedError,
)
from masterguard.core.auth.login_attempts import (
    AccountLockedError,
    LoginAttemptTracker,
    hash_identifier,
)
from masterguard.core.auth.session_control import (
    REASON_EXPIRED,
    REASON_LOGOUT,
    ExpiryCallback,
    SessionExpiredError,
    SessionManager,
    SessionMonitor,
    SessionNotFoundError,
)
from masterguard.core.models import LoginResult, Session, SessionContext
from masterguard.security.audit import SecurityEventLog
from masterguard.security.constants import (
    ACTIVITY_DEBOUNCE_SECONDS,
    MASTER_ROLE,
    MONITOR_INTERVAL_SECONDS,
)
from masterguard.security.events import SecurityEventLevel, SecurityEventType
from masterguard.utils.clock import Clock, utc_now


class AuthGateway:
    """
    Master authentication flow.

    Usage:
        gateway = AuthGateway(verifier, tracker, sessions, event_log)

        result = gateway.login("ops@example.ch", password, SessionContext(ip="10.0.0.5"))
        gateway.authorize(result.session_id, result.token)
        gateway.record_activity(result.session_id, "key")
        gateway.logout(result.session_id)

    Every login starts an ActivityWatcher and a SessionMonitor for the
    new session; ``logout`` and ``shutdown`` stop them before returning.
    """

    def __init__(
        self,
        verifier: CredentialVerifier,
        tracker: LoginAttemptTracker,
        sessions: SessionManager,
        event_log: SecurityEventLog,
        master_role: str = MASTER_ROLE,
        monitor_interval_seconds: float = MONITOR_INTERVAL_SECONDS,
        activity_debounce_seconds: float = ACTIVITY_DEBOUNCE_SECONDS,
        start_monitors: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._verifier = verifier
        self._tracker = tracker
        self._sessions = sessions
        self._events = event_log
        self._master_role = master_role
        self._monitor_interval = monitor_interval_seconds
        self._debounce = activity_debounce_seconds
        self._start_monitors = start_monitors
        self._clock = clock

        self._watchers: dict[str, ActivityWatcher] = {}
        self._monitors: dict[str, SessionMonitor] = {}
        self._forced_logout_callbacks: list[ExpiryCallback] = []
        self._lock = threading.Lock()
        self._log = logging.getLogger("masterguard.auth.gateway")

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(
        self,
        identifier: str,
        secret: str,
        context: Optional[SessionContext] = None,
    ) -> LoginResult:
        """
        Authenticate a master user and open a session.

        Raises:
            AccountLockedError: If the identifier is inside a lockout window
            InvalidCredentialsError: If the credentials are wrong
            UnauthorizedError: If the user lacks the master role
            StorageError: If the store is unavailable
        """
        context = context or SessionContext()
        id_hash = hash_identifier(identifier or "")
        client = {"ip": context.ip, "user_agent": context.user_agent}

        status = self._tracker.check_locked(identifier)
        if status.locked:
            self._events.log(
                SecurityEventType.ACCOUNT_LOCKED,
                SecurityEventLevel.WARNING,
                "Login attempt on locked account",
                details={
                    "identifier_hash": id_hash,
                    "lock_until": status.lock_until.isoformat(),
                },
                **client,
            )
            raise AccountLockedError(status.lock_until, now=self._clock())

        try:
            principal = self._verifier.verify(identifier, secret)
        except InvalidCredentialsError:
            failure = self._tracker.record_failure(identifier)
            self._events.log(
                SecurityEventType.LOGIN_FAILED,
                SecurityEventLevel.WARNING,
                "Invalid credentials",
                details={
                    "identifier_hash": id_hash,
                    "attempts": failure.attempts,
                    "max_attempts": self._tracker.max_attempts,
                },
                **client,
            )
            if failure.locked:
                self._events.log(
                    SecurityEventType.ACCOUNT_LOCKED,
                    SecurityEventLevel.ERROR,
                    f"Account locked after {failure.attempts} failed attempts",
                    details={
                        "identifier_hash": id_hash,
                        "lock_until": failure.lock_until.isoformat(),
                    },
                    **client,
                )
            raise InvalidCredentialsError(
                f"Login failed ({failure.attempts}/{self._tracker.max_attempts})"
            ) from None

        if not self._verifier.has_role(principal.id, self._master_role):
            self._verifier.sign_out(principal.id)
            self._events.log(
                SecurityEventType.UNAUTHORIZED_ACCESS,
                SecurityEventLevel.ERROR,
                f"User lacks the {self._master_role} role",
                user_id=principal.id,
                details={"identifier_hash": id_hash, "required_role": self._master_role},
                **client,
            )
            raise UnauthorizedError(f"Principal {principal.id} is not a master user")

        self._tracker.reset(identifier)

        session, token = self._sessions.create(principal, context)
        self._events.log(
            SecurityEventType.LOGIN_SUCCESS,
            SecurityEventLevel.INFO,
            "Master login successful",
            user_id=principal.id,
            session_id=session.session_id,
            **client,
        )

        self._start_tracking(session.session_id)

        return LoginResult(
            session_id=session.session_id,
            token=token,
            expires_at=session.expires_at,
            user_id=principal.id,
        )

    def logout(self, session_id: str) -> Session:
        """
        End a session at the user's request.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        self._stop_tracking(session_id)

        before = self._sessions.get(session_id)
        session = self._sessions.terminate(session_id, REASON_LOGOUT)

        if before is not None and before.active:
            self._events.log(
                SecurityEventType.LOGOUT,
                SecurityEventLevel.INFO,
                "Master logout",
                user_id=session.user_id,
                session_id=session_id,
                ip=session.ip,
                user_agent=session.user_agent,
            )
            self._release_identity(session.user_id)

        return session

    # ------------------------------------------------------------------
    # Request-time operations
    # ------------------------------------------------------------------

    def authorize(self, session_id: str, token: str) -> Session:
        """
        Authenticate a request against a session.

        Raises:
            SessionNotFoundError: If the session is unknown or the token
                does not match
            SessionExpiredError: If the session has ended
        """
        try:
            return self._sessions.verify_token(session_id, token)
        except SessionExpiredError:
            self._force_logout(session_id, REASON_EXPIRED)
            raise
        except SessionNotFoundError:
            if self._sessions.get(session_id) is None:
                self._stop_tracking(session_id)
            raise

    def record_activity(self, session_id: str, signal: str) -> bool:
        """
        Forward an interaction signal to the session's watcher.

        Returns:
            True if the signal extended the session
        """
        with self._lock:
            watcher = self._watchers.get(session_id)
        if watcher is None:
            return False
        return watcher.notify(signal)

    def on_forced_logout(self, callback: ExpiryCallback) -> None:
        """Register a callback for sessions ended by expiry."""
        self._forced_logout_callbacks.append(callback)

    def monitor_for(self, session_id: str) -> Optional[SessionMonitor]:
        with self._lock:
            return self._monitors.get(session_id)

    def watcher_for(self, session_id: str) -> Optional[ActivityWatcher]:
        with self._lock:
            return self._watchers.get(session_id)

    def shutdown(self) -> None:
        """Stop every watcher and monitor."""
        with self._lock:
            session_ids = list(set(self._watchers) | set(self._monitors))
        for session_id in session_ids:
            self._stop_tracking(session_id)
        self._log.info("Auth gateway stopped (%d sessions released)", len(session_ids))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_tracking(self, session_id: str) -> None:
        watcher = ActivityWatcher(
            self._sessions,
            session_id,
            debounce_seconds=self._debounce,
            clock=self._clock,
            on_expired=self._force_logout,
        )
        monitor = SessionMonitor(
            self._sessions,
            session_id,
            interval_seconds=self._monitor_interval,
            on_expired=self._on_monitor_expired,
        )

        with self._lock:
            self._watchers[session_id] = watcher
            self._monitors[session_id] = monitor

        watcher.start()
        if self._start_monitors:
            monitor.start()

    def _stop_tracking(self, session_id: str) -> None:
        with self._lock:
            watcher = self._watchers.pop(session_id, None)
            monitor = self._monitors.pop(session_id, None)

        if watcher:
            watcher.stop()
        if monitor:
            monitor.stop()

    def _on_monitor_expired(self, session_id: str, reason: str) -> None:
        self._stop_tracking(session_id)
        session = self._sessions.get(session_id)
        if session is not None:
            self._release_identity(session.user_id)
        self._notify_forced_logout(session_id, reason)

    def _force_logout(self, session_id: str, reason: str) -> None:
        self._stop_tracking(session_id)
        session = self._sessions.get(session_id)
        if session is None or not session.active:
            return
        self._sessions.terminate(session_id, reason)
        self._release_identity(session.user_id)
        self._notify_forced_logout(session_id, reason)

    def _release_identity(self, user_id: str) -> None:
        """Sign the principal out of the provider once its last session ends."""
        if not any(s.user_id == user_id for s in self._sessions.list_active()):
            self._verifier.sign_out(user_id)

    def _notify_forced_logout(self, session_id: str, reason: str) -> None:
        self._log.info("Session %s force-ended: %s", session_id, reason)
        for callback in list(self._forced_logout_callbacks):
            try:
                callback(session_id, reason)
            except Exception as e:
                self._log.error(f"Forced-logout callback failed: {e}")
