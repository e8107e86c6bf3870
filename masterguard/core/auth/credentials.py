"""
Credential Verification
=======================

Call shape of the external identity provider plus a store-backed
reference implementation using Argon2id.

Security Properties:
- Memory-hard password hashing (argon2-cffi)
- Unknown identifiers still pay for a hash (constant-time behaviour)
- One generic failure for "unknown user" and "wrong password"
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from typing import Final, Iterable, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from masterguard.core.auth.login_attempts import hash_identifier
from masterguard.core.errors import MasterGuardError
from masterguard.core.models import Principal
from masterguard.db.store import KeyValueStore
from masterguard.security.constants import USERS_PATH


# Argon2id parameters (OWASP 2023 recommended minimums)
ARGON2_MEMORY_COST: Final[int] = 102400  # 100 MB in KiB
ARGON2_TIME_COST: Final[int] = 2
ARGON2_PARALLELISM: Final[int] = 4


class InvalidCredentialsError(MasterGuardError):
    """Raised for a wrong identifier or secret. Never says which."""

    code = "invalid_credentials"
    public_message = "Invalid email or password"
    status = 401


class UnauthorizedError(MasterGuardError):
    """Raised when valid credentials lack the required role."""

    code = "unauthorized"
    public_message = "Access denied"
    status = 403


class CredentialVerifier(ABC):
    """Identity provider contract consumed by the auth gateway."""

    @abstractmethod
    def verify(self, identifier: str, secret: str) -> Principal:
        """
        Verify credentials.

        Raises:
            InvalidCredentialsError: If the identifier or secret is wrong
        """

    @abstractmethod
    def has_role(self, principal_id: str, role: str) -> bool:
        """Check whether the principal carries ``role``."""

    @abstractmethod
    def sign_out(self, principal_id: str) -> None:
        """Drop any identity-provider state held for the principal."""


class LocalCredentialVerifier(CredentialVerifier):
    """
    Credential verifier backed by ``users/{hash(identifier)}`` records.

    Usage:
        verifier = LocalCredentialVerifier(store)
        verifier.create_user("ops@example.ch", "S3cure!Passw0rd", roles=["master"])
        principal = verifier.verify("ops@example.ch", "S3cure!Passw0rd")
    """

    __slots__ = ("_store", "_hasher", "_dummy_hash", "_signed_in", "_lock")

    def __init__(
        self,
        store: KeyValueStore,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        self._store = store
        self._hasher = hasher or PasswordHasher(
            time_cost=ARGON2_TIME_COST,
            memory_cost=ARGON2_MEMORY_COST,
            parallelism=ARGON2_PARALLELISM,
        )
        self._dummy_hash = self._hasher.hash(uuid.uuid4().hex)
        self._signed_in: set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def _path_for(identifier: str) -> str:
        return f"{USERS_PATH}/{hash_identifier(identifier)}"

    def create_user(
        self,
        email: str,
        password: str,
        roles: Iterable[str] = (),
    ) -> Principal:
        """
        Register a user.

        Raises:
            ValueError: If the email is already registered or invalid
        """
        if not email or "@" not in email:
            raise ValueError("A valid email address is required")
        if not password:
            raise ValueError("Password cannot be empty")

        path = self._path_for(email)
        if self._store.get(path) is not None:
            raise ValueError("User already exists")

        principal = Principal(id=str(uuid.uuid4()), email=email.strip().lower())
        self._store.set(path, {
            "id": principal.id,
            "email": principal.email,
            "passwordHash": self._hasher.hash(password),
            "roles": sorted(set(roles)),
            "active": True,
        })
        return principal

    def _find_by_id(self, principal_id: str) -> Optional[dict]:
        for record in self._store.list(USERS_PATH).values():
            if record.get("id") == principal_id:
                return record
        return None

    def verify(self, identifier: str, secret: str) -> Principal:
        record = self._store.get(self._path_for(identifier)) if identifier else None

        if record is None or not record.get("active", False):
            # Constant-time behavior: verify against a dummy hash anyway
            self._check(self._dummy_hash, secret or "")
            raise InvalidCredentialsError("Unknown or inactive identifier")

        if not self._check(record["passwordHash"], secret or ""):
            raise InvalidCredentialsError("Password mismatch")

        with self._lock:
            self._signed_in.add(record["id"])
        return Principal(id=record["id"], email=record["email"])

    def _check(self, encoded: str, secret: str) -> bool:
        try:
            return self._hasher.verify(encoded, secret)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def has_role(self, principal_id: str, role: str) -> bool:
        record = self._find_by_id(principal_id)
        return record is not None and role in record.get("roles", [])

    def sign_out(self, principal_id: str) -> None:
        with self._lock:
            self._signed_in.discard(principal_id)

    def is_signed_in(self, principal_id: str) -> bool:
        with self._lock:
            return principal_id in self._signed_in
