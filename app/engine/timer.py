"""
Attempt Timer

Remaining time is derived from the persisted ``started_at`` and the
quiz time limit on every call. There is no countdown state anywhere,
so a client that reloads mid-attempt sees the same value it would
have seen without reloading.

Expiry is level-triggered: once ``remaining == 0`` every observer
should treat the attempt as due for submission, and submission itself
tolerates having already happened.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def remaining_seconds(
    started_at: datetime,
    duration_minutes: Optional[int],
    now: datetime,
) -> Optional[int]:
    """
    Seconds left in an attempt, never negative.

    Returns None for an untimed quiz (no expiry).
    """
    if duration_minutes is None:
        return None
    elapsed = (ensure_aware(now) - ensure_aware(started_at)).total_seconds()
    return max(0, math.floor(duration_minutes * 60 - elapsed))


def deadline(started_at: datetime, duration_minutes: Optional[int]) -> Optional[datetime]:
    if duration_minutes is None:
        return None
    return ensure_aware(started_at) + timedelta(minutes=duration_minutes)


def is_expired(
    started_at: datetime,
    duration_minutes: Optional[int],
    now: datetime,
) -> bool:
    remaining = remaining_seconds(started_at, duration_minutes, now)
    return remaining is not None and remaining == 0


@dataclass(frozen=True)
class TimerReading:
    """A single observation of an attempt's clock."""
    started_at: datetime
    now: datetime
    duration_minutes: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        return remaining_seconds(self.started_at, self.duration_minutes, self.now)

    @property
    def deadline(self) -> Optional[datetime]:
        return deadline(self.started_at, self.duration_minutes)

    @property
    def expired(self) -> bool:
        return is_expired(self.started_at, self.duration_minutes, self.now)

    @property
    def untimed(self) -> bool:
        return self.duration_minutes is None
