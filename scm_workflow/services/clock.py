"""
Injectable time source.

Every service reads ``clock.now()`` instead of calling datetime directly,
so tests can freeze and step time deterministically.

Usage:
    from scm_workflow.services.clock import FrozenClock

    clock = FrozenClock(datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc))
    clock.advance(hours=3)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All arithmetic and comparisons against clock.now() go through this helper
    so the same code works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = as_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, dt: datetime) -> None:
        self._now = as_utc(dt)

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        """Move forward by ``delta`` or by timedelta keyword arguments."""
        step = delta if delta is not None else timedelta(**kwargs)
        self._now = self._now + step
        return self._now
