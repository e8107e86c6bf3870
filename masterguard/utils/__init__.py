"""
Utils module - Utility functions and helpers.
"""

from masterguard.utils.clock import Clock, utc_now
from masterguard.utils.locks import StripedLock

__all__ = [
    "Clock",
    "StripedLock",
    "utc_now",
]
