"""
Clock Utilities
===============

Every time-dependent component takes a ``clock`` callable so lockout,
expiry and batching deadlines can be driven deterministically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
