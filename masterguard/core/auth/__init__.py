"""
MasterGuard Authentication Module
=================================

Provides master authentication with:
- Pluggable credential verification (Argon2id reference verifier)
- Failed-login counting with lockout
- Encrypted session tokens with sliding expiration
- Debounced activity tracking and background expiry monitoring

Security Properties:
- Lockout checked before credentials are verified
- Constant-time verification and token comparison
- Generic failure messages
"""

from masterguard.core.auth.credentials import (
    CredentialVerifier,
    InvalidCredentialsError,
    LocalCredentialVerifier,
    UnauthorizedError,
)
from masterguard.core.auth.login_attempts import (
    AccountLockedError,
    LoginAttemptTracker,
    hash_identifier,
)
from masterguard.core.auth.session_control import (
    SessionError,
    SessionExpiredError,
    SessionManager,
    SessionMonitor,
    SessionNotFoundError,
)
from masterguard.core.auth.activity import ActivityWatcher
from masterguard.core.auth.gateway import AuthGateway

__all__ = [
    "CredentialVerifier",
    "InvalidCredentialsError",
    "LocalCredentialVerifier",
    "UnauthorizedError",
    "AccountLockedError",
    "LoginAttemptTracker",
    "hash_identifier",
    "SessionError",
    "SessionExpiredError",
    "SessionManager",
    "SessionMonitor",
    "SessionNotFoundError",
    "ActivityWatcher",
    "AuthGateway",
]
