"""
Secret Store
============

File-backed secret storage for key material needed at startup.

Security Features:
- Secrets live outside the configuration and the environment
- Files are created owner-only (0600) inside an owner-only directory
- Key material is never logged or included in reprs
"""

from __future__ import annotations

import base64
import os
import platform
import re
import secrets
import stat
from pathlib import Path
from typing import Final

from masterguard.security.constants import KEY_LENGTH_BYTES


SESSION_TOKEN_KEY_NAME: Final[str] = "session_token_key"

_VALID_NAME: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_]{1,64}$")


class SecretNotFoundError(KeyError):
    """Raised when a required secret does not exist."""
    pass


class FileSecretStore:
    """
    Stores base64 encoded secrets as individual files.

    Usage:
        store = FileSecretStore(config.paths.secrets_dir)
        key = store.ensure(SESSION_TOKEN_KEY_NAME, 32)
    """

    __slots__ = ("_directory",)

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    def _path_for(self, name: str) -> Path:
        if not _VALID_NAME.match(name):
            raise ValueError(f"Invalid secret name: {name!r}")
        return self._directory / f"{name}.secret"

    def get(self, name: str) -> bytes:
        """
        Read a secret.

        Raises:
            SecretNotFoundError: If the secret has never been stored
        """
        path = self._path_for(name)
        if not path.exists():
            raise SecretNotFoundError(name)
        return base64.b64decode(path.read_text(encoding="ascii").strip())

    def put(self, name: str, value: bytes) -> None:
        """Write a secret with owner-only permissions."""
        path = self._path_for(name)
        self._directory.mkdir(parents=True, exist_ok=True)

        is_posix = platform.system().lower() != "windows"
        if is_posix:
            self._directory.chmod(stat.S_IRWXU)

        flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
        fd = os.open(path, flags, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as handle:
            handle.write(base64.b64encode(value).decode("ascii"))

        if is_posix:
            path.chmod(stat.S_IRUSR | stat.S_IWUSR)

    def ensure(self, name: str, length: int = KEY_LENGTH_BYTES) -> bytes:
        """Return the named secret, generating it on first use."""
        try:
            value = self.get(name)
        except SecretNotFoundError:
            value = secrets.token_bytes(length)
            self.put(name, value)
            return value

        if len(value) != length:
            raise ValueError(f"Secret {name!r} has unexpected length")
        return value

    def __repr__(self) -> str:
        return f"FileSecretStore(directory={str(self._directory)!r})"
