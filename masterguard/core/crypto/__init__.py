"""
MasterGuard Cryptographic Core
==============================

Authenticated encryption for session tokens at rest.

Security Properties:
    - All encryption is authenticated (AEAD)
    - Keys come from the secret store, never from source or config
    - Constant-time comparisons for token checks
"""

from masterguard.core.crypto.aes_gcm import TokenCipher, TokenDecryptionError

__all__ = [
    "TokenCipher",
    "TokenDecryptionError",
]
