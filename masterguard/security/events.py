"""
Security Events
===============

Immutable records of authentication, session and system occurrences.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SecurityEventLevel(Enum):
    """Security event severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def raises_alert(self) -> bool:
        return self in (SecurityEventLevel.ERROR, SecurityEventLevel.CRITICAL)


class SecurityEventType(Enum):
    """Types of security events."""
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    ACCOUNT_LOCKED = "account_locked"
    UNAUTHORIZED_ACCESS = "unauthorized_access"

    # Sessions
    SESSION_CREATED = "session_created"
    SESSION_ENDED = "session_ended"
    SESSION_INVALID = "session_invalid"

    # Monitoring
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    SYSTEM_ERROR = "system_error"


@dataclass(frozen=True)
class SecurityEvent:
    """An immutable security event."""
    type: SecurityEventType
    level: SecurityEventLevel
    message: str
    timestamp: datetime
    id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex}")
    user_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    ip: str = "unknown"
    user_agent: str = "unknown"
    session_id: Optional[str] = None

    def __post_init__(self) -> None:
        # Detach from the caller's dict so later mutation cannot rewrite history
        object.__setattr__(self, "details", copy.deepcopy(dict(self.details)))

    @property
    def actor(self) -> Optional[str]:
        """User id, or the hashed identifier for pre-authentication events."""
        return self.user_id or self.details.get("identifier_hash")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "level": self.level.value,
            "userId": self.user_id,
            "message": self.message,
            "details": copy.deepcopy(self.details),
            "ip": self.ip,
            "userAgent": self.user_agent,
            "sessionId": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityEvent:
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            type=SecurityEventType(data["type"]),
            level=SecurityEventLevel(data["level"]),
            user_id=data.get("userId"),
            message=data.get("message", ""),
            details=data.get("details") or {},
            ip=data.get("ip", "unknown"),
            user_agent=data.get("userAgent", "unknown"),
            session_id=data.get("sessionId"),
        )
