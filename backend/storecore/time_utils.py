from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import current_app, has_app_context

CLOCK_EXTENSION_KEY = "storecore.clock"


class SystemClock:
    """Wall clock, UTC-naive."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """
    Settable clock for tests and replays.

    Time only moves when set() or advance() is called.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._lock = threading.Lock()
        self._now = start or datetime(2025, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = _to_naive_utc(value)

    def advance(self, **delta) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


_default_clock = SystemClock()


def install_clock(app, clock) -> None:
    app.extensions[CLOCK_EXTENSION_KEY] = clock or _default_clock


def get_clock():
    if has_app_context():
        return current_app.extensions.get(CLOCK_EXTENSION_KEY, _default_clock)
    return _default_clock


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical). Reads the installed clock."""
    return get_clock().now()


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return _to_naive_utc(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
