"""
Core module - Contains configuration, logging, and base components.
"""

from masterguard.core.config import SecureConfig
from masterguard.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["SecureConfig", "get_secure_logger", "SecureLogFilter"]
