"""
Security Constants
==================

Defines the timing and sizing constants of the master session subsystem.
These values are part of the interop contract with other components and
must not be changed without updating every consumer.
"""

from typing import Final

# Sessions
SESSION_TIMEOUT_SECONDS: Final[int] = 30 * 60
MONITOR_INTERVAL_SECONDS: Final[int] = 60
ACTIVITY_DEBOUNCE_SECONDS: Final[int] = 5
SESSION_TOKEN_BYTES: Final[int] = 48
MASTER_ROLE: Final[str] = "master"

# Brute-force protection
MAX_LOGIN_ATTEMPTS: Final[int] = 3
LOCKOUT_DURATION_SECONDS: Final[int] = 5 * 60
SUSPICIOUS_FAILURE_THRESHOLD: Final[int] = 3

# Security event log
EVENT_BATCH_SIZE: Final[int] = 50
EVENT_BATCH_TIMEOUT_SECONDS: Final[float] = 5.0
EVENT_RING_CAPACITY: Final[int] = 10_000

# Outbound API client
API_CACHE_TTL_SECONDS: Final[int] = 5 * 60
API_CACHE_MAX_ENTRIES: Final[int] = 100
API_RETRY_ATTEMPTS: Final[int] = 3
API_RETRY_DELAY_SECONDS: Final[float] = 1.0
API_TIMEOUT_SECONDS: Final[float] = 10.0

# Encryption
ENCRYPTION_ALGORITHM: Final[str] = "AES-256-GCM"
KEY_LENGTH_BYTES: Final[int] = 32  # 256 bits
NONCE_LENGTH_BYTES: Final[int] = 12  # 96 bits for GCM
TAG_LENGTH_BYTES: Final[int] = 16  # 128 bits

# Store paths
SESSIONS_PATH: Final[str] = "sessions/master"
LOGIN_ATTEMPTS_PATH: Final[str] = "loginAttempts"
USERS_PATH: Final[str] = "users"
SECURITY_LOGS_PATH: Final[str] = "security_logs"
SECURITY_LOGS_CRITICAL_PATH: Final[str] = "security_logs/critical"
SECURITY_ALERTS_PATH: Final[str] = "security_alerts"
