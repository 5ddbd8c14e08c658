from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """UTC wall clock used for optimistic timestamps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def age(clock: Clock, since: datetime) -> timedelta:
    """Distance between ``since`` and the clock's now, ignoring direction."""
    return abs(clock.now() - since)
