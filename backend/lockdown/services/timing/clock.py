"""Timestamp arithmetic for question timers.

All elapsed-time math goes through :func:`elapsed_seconds`; nothing else in
the code base subtracts timestamps.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now; all stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_seconds(since: Optional[datetime], now: datetime) -> int:
    """Whole seconds from ``since`` to ``now``, floored and never negative."""
    if since is None:
        return 0
    return max(0, int((now - since).total_seconds()))


def live_delta(progress, now: datetime) -> int:
    """Unflushed seconds of a running timer; 0 unless status is active."""
    if progress.status != 'active' or progress.last_resumed_at is None:
        return 0
    return elapsed_seconds(progress.last_resumed_at, now)
