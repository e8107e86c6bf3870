"""
MasterGuard - Master Session & Brute-Force Protection
=====================================================

This package guards the master login of an administration backend:
credential checks with lockout, encrypted session tokens with sliding
expiry, and an append-only security event log.

Security Notice:
- No secrets or raw login identifiers are logged
- Fail-closed design pattern
- Session tokens are only persisted encrypted
"""

from masterguard.core.config import SecureConfig
from masterguard.core.logging import get_secure_logger

__version__ = "0.1.0"
__author__ = "MasterGuard Team"

__all__ = ["SecureConfig", "get_secure_logger", "__version__"]
