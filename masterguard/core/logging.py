"""
Secure Logging Module
=====================

Provides security-aware logging with secret and identifier filtering.

Security Features:
- Automatic secret/sensitive data filtering
- E-mail addresses are redacted (login identifiers never reach the logs)
- Rotating log files with size limits
- Structured (JSON) logging support
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Final, Optional, Pattern

from masterguard.core.config import LoggingConfig


_SENSITIVE_PATTERNS: Final[list[tuple[str, Pattern[str]]]] = [
    ("password", re.compile(r'(?i)(password|passwd|pwd)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("api_key", re.compile(r'(?i)(api[_-]?key|apikey)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("token", re.compile(r'(?i)\b(bearer\s+|token\s*[=:]\s*)["\']?[A-Za-z0-9._~+/-]{8,}=*["\']?')),
    ("secret", re.compile(r'(?i)(secret|private[_-]?key)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("email", re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}')),
    # Base64 encoded secrets
    ("base64_secret", re.compile(r'[A-Za-z0-9+/_-]{40,}={0,2}')),
]

_REDACTED_TEXT: Final[str] = "[REDACTED]"

# Optional attributes set through ``extra=`` by the auth components
CONTEXT_FIELDS: Final[tuple[str, ...]] = ("session_id", "user_id", "event_id")

_CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


class SecureLogFilter(logging.Filter):
    """
    Redacts passwords, bearer tokens, key material and e-mail addresses
    from messages, arguments and session context fields.
    """

    def __init__(self, name: str = "", additional_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._additional_patterns = additional_patterns or []

    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize in place; never drops a record."""
        if isinstance(record.msg, str):
            record.msg = self._clean(record.msg)

        if isinstance(record.args, dict):
            record.args = {key: self._clean(value) for key, value in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._clean(arg) for arg in record.args)

        for field_name in CONTEXT_FIELDS:
            value = getattr(record, field_name, None)
            if isinstance(value, str):
                setattr(record, field_name, self._clean(value))

        return True

    def _clean(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value

        for label, pattern in _SENSITIVE_PATTERNS:
            value = pattern.sub(f"{label}={_REDACTED_TEXT}", value)
        for pattern in self._additional_patterns:
            value = pattern.sub(_REDACTED_TEXT, value)
        return value


class StructuredLogFormatter(logging.Formatter):
    """
    One JSON object per line, carrying the session context passed via
    ``extra={"session_id": ...}`` so auth logs can be joined with the
    security event log.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        for field_name in CONTEXT_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                entry[field_name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class SecureRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that creates its directory and rejects
    path traversal.
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
        encoding: str = "utf-8",
    ) -> None:
        if ".." in Path(filename).parts:
            raise ValueError("Log path cannot contain path traversal sequences")

        log_path = Path(filename).resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            str(log_path),
            mode=mode,
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
        )


def _build_handlers(
    log_file: Optional[Path],
    config: LoggingConfig,
) -> list[logging.Handler]:
    secure_filter = SecureLogFilter()
    handlers: list[logging.Handler] = []

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        console_handler.addFilter(secure_filter)
        handlers.append(console_handler)

    if config.enable_file and log_file is not None:
        file_handler = SecureRotatingFileHandler(
            filename=log_file,
            maxBytes=config.max_file_size_bytes,
            backupCount=config.backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        if config.enable_json:
            file_handler.setFormatter(StructuredLogFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler.addFilter(secure_filter)
        handlers.append(file_handler)

    return handlers


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Create a secure logger with automatic secret filtering.

    Args:
        name: Logger name (typically __name__)
        log_dir: Directory for log files (file output disabled if None)
        config: Logging configuration (defaults if not provided)

    Returns:
        Configured secure logger instance
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    config = config or LoggingConfig()
    logger.setLevel(getattr(logging, config.level.upper()))

    log_file = log_dir / f"{name.replace('.', '_')}.log" if log_dir else None
    for handler in _build_handlers(log_file, config):
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def configure_root_logger(
    config: LoggingConfig,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure the root logger with secure defaults.

    Called once at startup so every ``masterguard.*`` logger inherits the
    filtered handlers.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()

    log_file = log_dir / "masterguard.log" if log_dir else None
    for handler in _build_handlers(log_file, config):
        root_logger.addHandler(handler)
