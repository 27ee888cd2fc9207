"""
Time source abstraction.

Every component that compares against "now" (lockout windows, instance TTLs,
write timestamps) takes a `Clock` so tests can move time explicitly.

Two readings are exposed:

- `now()` is wall-clock UTC. It is what gets persisted (lockout reset times,
  instance document timestamps) and what lockout windows compare against,
  since those must survive a process restart.
- `monotonic()` is a process-local counter in seconds. In-memory deadlines
  (instance TTL, archival retention) are computed from it so a wall-clock
  step does not expire or extend a live encounter.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...

    def monotonic(self) -> float:
        """Seconds from an arbitrary origin; never goes backwards."""
        ...


class SystemClock:
    """Wall clock in UTC plus `time.monotonic`."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on the
    way back out).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
