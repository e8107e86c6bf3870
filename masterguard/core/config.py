"""
Secure Configuration Module
===========================

Provides immutable, environment-aware configuration for the master
session subsystem.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- No secrets in default values (keys come from the secret store)
- Type-safe configuration access
- OS-aware path handling
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Any, Optional

from masterguard.security import constants


_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "api_key",
    "private", "credential", "salt",
})


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


# (windows, darwin, other) base for each directory kind; "other" is
# (XDG variable, fallback relative to home).
_PLATFORM_DIRS: Final[dict[str, tuple[str, str, tuple[str, str]]]] = {
    "data": ("MasterGuard", "Library/Application Support/MasterGuard", ("XDG_DATA_HOME", ".local/share")),
    "config": ("MasterGuard", "Library/Preferences/MasterGuard", ("XDG_CONFIG_HOME", ".config")),
    "log": ("MasterGuard/Logs", "Library/Logs/MasterGuard", ("XDG_STATE_HOME", ".local/state")),
}


def _default_dir(kind: str) -> Path:
    """OS-appropriate default directory for ``data``, ``config`` or ``log``."""
    windows, darwin, (xdg_var, xdg_fallback) = _PLATFORM_DIRS[kind]
    system = platform.system().lower()
    home = Path.home()

    if system == "windows":
        return Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local")) / windows
    if system == "darwin":
        return home / darwin

    base = Path(os.environ.get(xdg_var, home / xdg_fallback)) / "MasterGuard"
    return base / "logs" if kind == "log" else base


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=lambda: _default_dir("data"))
    config_dir: Path = field(default_factory=lambda: _default_dir("config"))
    log_dir: Path = field(default_factory=lambda: _default_dir("log"))

    def __post_init__(self) -> None:
        for field_name in ["data_dir", "config_dir", "log_dir"]:
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / "masterguard.db"

    @property
    def secrets_dir(self) -> Path:
        return self.config_dir / "secrets"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Session lifetime and activity tracking settings."""

    timeout_seconds: int = constants.SESSION_TIMEOUT_SECONDS
    monitor_interval_seconds: int = constants.MONITOR_INTERVAL_SECONDS
    activity_debounce_seconds: int = constants.ACTIVITY_DEBOUNCE_SECONDS
    master_role: str = constants.MASTER_ROLE

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("Session timeout must be positive")
        if self.monitor_interval_seconds <= 0:
            raise ValueError("Monitor interval must be positive")
        if self.activity_debounce_seconds < 1:
            raise ValueError("Activity debounce must be at least 1 second")


@dataclass(frozen=True, slots=True)
class LockoutConfig:
    """Brute-force protection settings."""

    max_login_attempts: int = constants.MAX_LOGIN_ATTEMPTS
    lockout_duration_seconds: int = constants.LOCKOUT_DURATION_SECONDS

    def __post_init__(self) -> None:
        if self.max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")
        if self.lockout_duration_seconds < 1:
            raise ValueError("lockout_duration_seconds must be at least 1")


@dataclass(frozen=True, slots=True)
class EventLogConfig:
    """Security event batching settings."""

    batch_size: int = constants.EVENT_BATCH_SIZE
    batch_timeout_seconds: float = constants.EVENT_BATCH_TIMEOUT_SECONDS
    ring_capacity: int = constants.EVENT_RING_CAPACITY

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.batch_timeout_seconds <= 0:
            raise ValueError("batch_timeout_seconds must be positive")
        if self.ring_capacity < self.batch_size:
            raise ValueError("ring_capacity must not be smaller than batch_size")


@dataclass(frozen=True, slots=True)
class ApiConfig:
    """Outbound API client settings."""

    base_url: str = "http://localhost:8080/api"
    cache_ttl_seconds: int = constants.API_CACHE_TTL_SECONDS
    cache_max_entries: int = constants.API_CACHE_MAX_ENTRIES
    retry_attempts: int = constants.API_RETRY_ATTEMPTS
    retry_delay_seconds: float = constants.API_RETRY_DELAY_SECONDS
    timeout_seconds: float = constants.API_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid API base URL: {self.base_url}")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.cache_max_entries < 1:
            raise ValueError("cache_max_entries must be at least 1")


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Keyed store settings."""

    backend: str = "sqlite"
    timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.backend not in {"sqlite", "memory"}:
            raise ValueError(f"Unknown store backend: {self.backend}")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True
    enable_json: bool = False

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Immutable application configuration."""

    app_name: str = "MasterGuard"
    version: str = "0.1.0"
    debug_mode: bool = False

    def __post_init__(self) -> None:
        if self.debug_mode:
            import warnings
            warnings.warn(
                "Debug mode is enabled. This should NEVER be used in production.",
                SecurityWarning,
                stacklevel=2
            )


# Maps "section.key" override names to (section, field, converter).
_OVERRIDES: Final[dict[str, tuple[str, str, Any]]] = {
    "paths.data_dir": ("paths", "data_dir", Path),
    "paths.config_dir": ("paths", "config_dir", Path),
    "paths.log_dir": ("paths", "log_dir", Path),
    "session.timeout_seconds": ("session", "timeout_seconds", int),
    "session.monitor_interval_seconds": ("session", "monitor_interval_seconds", int),
    "session.activity_debounce_seconds": ("session", "activity_debounce_seconds", int),
    "lockout.max_login_attempts": ("lockout", "max_login_attempts", int),
    "lockout.lockout_duration_seconds": ("lockout", "lockout_duration_seconds", int),
    "events.batch_size": ("events", "batch_size", int),
    "events.batch_timeout_seconds": ("events", "batch_timeout_seconds", float),
    "events.ring_capacity": ("events", "ring_capacity", int),
    "api.base_url": ("api", "base_url", str),
    "api.cache_ttl_seconds": ("api", "cache_ttl_seconds", int),
    "api.retry_attempts": ("api", "retry_attempts", int),
    "api.timeout_seconds": ("api", "timeout_seconds", float),
    "store.backend": ("store", "backend", str),
    "store.timeout_seconds": ("store", "timeout_seconds", float),
    "logging.level": ("logging", "level", str),
    "logging.enable_console": ("logging", "enable_console", lambda v: v.lower() == "true"),
    "logging.enable_file": ("logging", "enable_file", lambda v: v.lower() == "true"),
    "logging.enable_json": ("logging", "enable_json", lambda v: v.lower() == "true"),
}

_SECTIONS: Final[dict[str, type]] = {
    "paths": PathConfig,
    "session": SessionConfig,
    "lockout": LockoutConfig,
    "events": EventLogConfig,
    "api": ApiConfig,
    "store": StoreConfig,
    "logging": LoggingConfig,
    "app": AppConfig,
}


class SecureConfig:
    """
    Centralized, immutable configuration with environment override support.

    Instances are built once at startup by the composition root and
    passed explicitly to the components that need them.

    Usage:
        config = SecureConfig.load()
        timeout = config.session.timeout_seconds
    """

    __slots__ = (
        "_paths", "_session", "_lockout", "_events", "_api", "_store",
        "_logging", "_app", "_frozen", "_config_hash",
    )

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        session: Optional[SessionConfig] = None,
        lockout: Optional[LockoutConfig] = None,
        events: Optional[EventLogConfig] = None,
        api: Optional[ApiConfig] = None,
        store: Optional[StoreConfig] = None,
        logging: Optional[LoggingConfig] = None,
        app: Optional[AppConfig] = None,
    ) -> None:
        supplied = {
            "paths": paths, "session": session, "lockout": lockout, "events": events,
            "api": api, "store": store, "logging": logging, "app": app,
        }
        object.__setattr__(self, "_frozen", False)
        for name, section_type in _SECTIONS.items():
            object.__setattr__(self, f"_{name}", supplied[name] or section_type())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Short digest of every section, used to spot config drift in logs."""
        config_str = "|".join(str(getattr(self, f"_{name}")) for name in _SECTIONS)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def session(self) -> SessionConfig:
        return self._session

    @property
    def lockout(self) -> LockoutConfig:
        return self._lockout

    @property
    def events(self) -> EventLogConfig:
        return self._events

    @property
    def api(self) -> ApiConfig:
        return self._api

    @property
    def store(self) -> StoreConfig:
        return self._store

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def app(self) -> AppConfig:
        return self._app

    @property
    def config_hash(self) -> str:
        """Get configuration integrity hash."""
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "MASTERGUARD") -> SecureConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables use the prefix and double underscores for
        nested values.

        Examples:
            MASTERGUARD_LOGGING__LEVEL=DEBUG
            MASTERGUARD_SESSION__TIMEOUT_SECONDS=1800
            MASTERGUARD_PATHS__DATA_DIR=/custom/path

        Args:
            env_prefix: Prefix for environment variables

        Returns:
            Configured SecureConfig instance

        Raises:
            ValueError: If an override has an invalid value
        """
        env_overrides = cls._parse_env_overrides(env_prefix)

        section_kwargs: dict[str, dict[str, Any]] = {}
        for config_key, value in env_overrides.items():
            if config_key not in _OVERRIDES:
                continue
            section, field_name, convert = _OVERRIDES[config_key]
            section_kwargs.setdefault(section, {})[field_name] = convert(value)

        # debug_mode cannot be overridden via env
        built = {
            section: _SECTIONS[section](**kwargs)
            for section, kwargs in section_kwargs.items()
        }
        return cls(**built)

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """
        ``PREFIX_SECTION__KEY`` variables as ``section.key`` names.

        Keys that look like secrets are skipped; those only ever come from
        the secret store.
        """
        marker = f"{prefix.upper()}_"
        names = {
            key[len(marker):].lower().replace("__", "."): value
            for key, value in os.environ.items()
            if key.startswith(marker)
        }
        return {name: value for name, value in names.items() if not _is_sensitive_key(name)}

    def ensure_directories(self) -> None:
        """Create the data, config and log directories, owner-only on POSIX."""
        paths = self._paths
        for directory in (paths.data_dir, paths.config_dir, paths.log_dir):
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            if os.name == "posix":
                directory.chmod(0o700)

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"SecureConfig(hash={self._config_hash}, app={self._app.app_name})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("SecureConfig is immutable after initialization")
        super().__setattr__(name, value)


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass
