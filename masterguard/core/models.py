"""
Authentication Models
=====================

Value types shared by the credential verifier, the attempt tracker and
the session manager.

Note: no model's repr ever includes secrets or raw login identifiers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True, slots=True)
class Principal:
    """A verified identity returned by the credential verifier."""
    id: str
    email: str

    def __repr__(self) -> str:
        return f"Principal(id={self.id!r})"


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Client details captured at login."""
    ip: str = "unknown"
    user_agent: str = "unknown"


class SessionState(Enum):
    """Session lifecycle states. EXPIRED and LOGGED_OUT are terminal."""
    CREATED = "created"
    ACTIVE = "active"
    EXTENDED = "extended"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.EXPIRED, SessionState.LOGGED_OUT)


@dataclass
class Session:
    """
    Master session record.

    ``session_token`` always holds the encrypted form; the plaintext
    token only exists in the return value of ``SessionManager.create``.
    """
    session_id: str
    user_id: str
    email: str
    user_agent: str
    ip: str
    start_time: datetime
    last_activity: datetime
    expires_at: datetime
    session_token: str
    active: bool = True
    state: SessionState = SessionState.CREATED
    end_time: Optional[datetime] = None
    end_reason: Optional[str] = None

    def __repr__(self) -> str:
        """Safe representation without token."""
        return (
            f"Session(session_id={self.session_id!r}, user_id={self.user_id!r}, "
            f"state={self.state.value}, expires_at={self.expires_at.isoformat()})"
        )

    def is_expired(self, now: datetime) -> bool:
        """Expired once ``now`` reaches the deadline."""
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        """Check if the session is valid (active and not expired)."""
        return self.active and not self.is_expired(now)

    def to_record(self) -> dict:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "email": self.email,
            "userAgent": self.user_agent,
            "ip": self.ip,
            "startTime": _format_time(self.start_time),
            "lastActivity": _format_time(self.last_activity),
            "expiresAt": _format_time(self.expires_at),
            "active": self.active,
            "sessionToken": self.session_token,
            "state": self.state.value,
            "endTime": _format_time(self.end_time),
            "endReason": self.end_reason,
        }

    @classmethod
    def from_record(cls, record: dict) -> Session:
        return cls(
            session_id=record["sessionId"],
            user_id=record["userId"],
            email=record["email"],
            user_agent=record["userAgent"],
            ip=record["ip"],
            start_time=datetime.fromisoformat(record["startTime"]),
            last_activity=datetime.fromisoformat(record["lastActivity"]),
            expires_at=datetime.fromisoformat(record["expiresAt"]),
            active=bool(record["active"]),
            session_token=record["sessionToken"],
            state=SessionState(record.get("state", SessionState.ACTIVE.value)),
            end_time=_parse_time(record.get("endTime")),
            end_reason=record.get("endReason"),
        )


@dataclass
class LoginAttemptRecord:
    """Failed-login counter for one hashed identifier."""
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    lock_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        """Check if the lockout window is still running."""
        return self.lock_until is not None and now < self.lock_until

    def to_record(self) -> dict:
        return {
            "attempts": self.attempts,
            "lastAttempt": _format_time(self.last_attempt),
            "lockUntil": _format_time(self.lock_until),
        }

    @classmethod
    def from_record(cls, record: dict) -> LoginAttemptRecord:
        return cls(
            attempts=int(record.get("attempts", 0)),
            last_attempt=_parse_time(record.get("lastAttempt")),
            lock_until=_parse_time(record.get("lockUntil")),
        )


@dataclass(frozen=True, slots=True)
class LockStatus:
    """Result of a lockout check."""
    locked: bool
    lock_until: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class FailureResult:
    """Result of recording a failed login."""
    attempts: int
    locked: bool
    lock_until: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class LoginResult:
    """Returned to the caller after a successful login."""
    session_id: str
    token: str
    expires_at: datetime
    user_id: str = field(default="")

    def __repr__(self) -> str:
        return f"LoginResult(session_id={self.session_id!r}, expires_at={self.expires_at.isoformat()})"
