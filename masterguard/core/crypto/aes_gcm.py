"""
AES-256-GCM Token Encryption
============================

Encrypts session tokens at rest with a long-lived key from the secret
store.

Security Properties:
    - 256-bit key (128-bit security level)
    - 96-bit random nonce per encryption (NIST recommended)
    - 128-bit authentication tag
    - The session id is bound as Additional Authenticated Data, so a
      ciphertext copied onto another session record fails to decrypt

WARNING:
    - Never reuse (key, nonce) pairs
    - InvalidTag means tampering or the wrong key; never ignore it
"""

from __future__ import annotations

import base64
import hmac
import secrets
from typing import Final, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from masterguard.security.constants import (
    KEY_LENGTH_BYTES,
    NONCE_LENGTH_BYTES,
    TAG_LENGTH_BYTES,
)

_VERSION_PREFIX: Final[str] = "v1."


class TokenDecryptionError(Exception):
    """Raised when a stored token cannot be authenticated."""
    pass


class TokenCipher:
    """
    AES-256-GCM cipher for opaque session tokens.

    Usage:
        cipher = TokenCipher(secret_store.ensure(SESSION_TOKEN_KEY_NAME))

        stored = cipher.encrypt(token, aad=session_id.encode())
        token = cipher.decrypt(stored, aad=session_id.encode())

    The encoded form is ``v1.<base64url(nonce || ciphertext || tag)>``.
    """

    __slots__ = ("_aesgcm",)

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH_BYTES:
            raise ValueError(f"Key must be exactly {KEY_LENGTH_BYTES} bytes")
        self._aesgcm = AESGCM(key)

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random AES-256 key."""
        return secrets.token_bytes(KEY_LENGTH_BYTES)

    def encrypt(self, plaintext: str, aad: Optional[bytes] = None) -> str:
        """
        Encrypt a token.

        Args:
            plaintext: The token to protect
            aad: Additional Authenticated Data (authenticated, not encrypted)

        Returns:
            Encoded ciphertext safe to persist
        """
        nonce = secrets.token_bytes(NONCE_LENGTH_BYTES)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), aad)
        encoded = base64.urlsafe_b64encode(nonce + ciphertext).decode("ascii")
        return f"{_VERSION_PREFIX}{encoded}"

    def decrypt(self, encoded: str, aad: Optional[bytes] = None) -> str:
        """
        Decrypt and authenticate a stored token.

        Raises:
            TokenDecryptionError: If the value is malformed or fails
                authentication (tampered, wrong key or wrong AAD)
        """
        if not encoded.startswith(_VERSION_PREFIX):
            raise TokenDecryptionError("Unknown token encoding")

        try:
            raw = base64.urlsafe_b64decode(encoded[len(_VERSION_PREFIX):])
        except ValueError as e:
            raise TokenDecryptionError("Malformed token encoding") from e

        if len(raw) < NONCE_LENGTH_BYTES + TAG_LENGTH_BYTES:
            raise TokenDecryptionError("Ciphertext too short (missing authentication tag)")

        nonce, ciphertext = raw[:NONCE_LENGTH_BYTES], raw[NONCE_LENGTH_BYTES:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, aad)
        except InvalidTag as e:
            raise TokenDecryptionError("Token authentication failed") from e

        return plaintext.decode("utf-8")

    @staticmethod
    def constant_time_compare(a: str, b: str) -> bool:
        """Constant-time string comparison to prevent timing attacks."""
        return hmac.compare_digest(a.encode(), b.encode())

    def __repr__(self) -> str:
        return "TokenCipher(algorithm='AES-256-GCM')"
