"""
Security module - Security event recording and monitoring components.

Security Considerations:
- Security events are append-only; nothing edits or deletes them
- Event logging never blocks or fails a login or logout
- Error and critical events raise operator alerts immediately
"""

from masterguard.security.constants import (
    LOCKOUT_DURATION_SECONDS,
    MAX_LOGIN_ATTEMPTS,
    SESSION_TIMEOUT_SECONDS,
    ENCRYPTION_ALGORITHM,
)
from masterguard.security.events import (
    SecurityEvent,
    SecurityEventLevel,
    SecurityEventType,
)
from masterguard.security.statistics import (
    SecurityStatistics,
    compute_statistics,
    parse_window,
)
from masterguard.security.audit import (
    AlertStore,
    AuditSink,
    SecurityEventLog,
    StoreAuditSink,
)

__all__ = [
    # Constants
    "LOCKOUT_DURATION_SECONDS",
    "MAX_LOGIN_ATTEMPTS",
    "SESSION_TIMEOUT_SECONDS",
    "ENCRYPTION_ALGORITHM",
    # Events
    "SecurityEvent",
    "SecurityEventLevel",
    "SecurityEventType",
    # Statistics
    "SecurityStatistics",
    "compute_statistics",
    "parse_window",
    # Event log
    "AlertStore",
    "AuditSink",
    "SecurityEventLog",
    "StoreAuditSink",
]
