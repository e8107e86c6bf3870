"""
Security Statistics
===================

Rolling-window aggregation over recorded security events.

Surfaces a simple brute-force signal (actors with repeated failed logins
inside the window) that is independent of the attempt tracker's own
lockout.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final, Iterable

from masterguard.security.constants import SUSPICIOUS_FAILURE_THRESHOLD
from masterguard.security.events import SecurityEvent, SecurityEventType


WINDOWS: Final[dict[str, timedelta]] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def parse_window(window: str) -> timedelta:
    """
    Convert a window name to a duration.

    Raises:
        ValueError: If the window is not one of 1h, 24h, 7d, 30d
    """
    try:
        return WINDOWS[window]
    except KeyError:
        raise ValueError(
            f"Unknown window {window!r}; expected one of {', '.join(WINDOWS)}"
        ) from None


@dataclass(frozen=True)
class SecurityStatistics:
    """Aggregated view of one window."""
    window: str
    since: datetime
    until: datetime
    total: int
    by_level: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    top_actors: list[tuple[str, int]] = field(default_factory=list)
    suspicious_actors: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "window": self.window,
            "since": self.since.isoformat(),
            "until": self.until.isoformat(),
            "total": self.total,
            "byLevel": dict(self.by_level),
            "byType": dict(self.by_type),
            "topActors": [{"actor": a, "count": c} for a, c in self.top_actors],
            "suspiciousActors": [{"actor": a, "failedLogins": c} for a, c in self.suspicious_actors],
        }


def compute_statistics(
    events: Iterable[SecurityEvent],
    window: str,
    now: datetime,
    top_n: int = 5,
    failure_threshold: int = SUSPICIOUS_FAILURE_THRESHOLD,
) -> SecurityStatistics:
    """Aggregate the events whose timestamp falls in ``(now - window, now]``."""
    since = now - parse_window(window)
    in_window = [e for e in events if since < e.timestamp <= now]

    by_level = Counter(e.level.value for e in in_window)
    by_type = Counter(e.type.value for e in in_window)
    activity = Counter(e.actor for e in in_window if e.actor)
    failures = Counter(
        e.actor for e in in_window
        if e.type == SecurityEventType.LOGIN_FAILED and e.actor
    )

    suspicious = sorted(
        ((actor, count) for actor, count in failures.items() if count >= failure_threshold),
        key=lambda item: (-item[1], item[0]),
    )

    return SecurityStatistics(
        window=window,
        since=since,
        until=now,
        total=len(in_window),
        by_level=dict(by_level),
        by_type=dict(by_type),
        top_actors=activity.most_common(top_n),
        suspicious_actors=suspicious,
    )
