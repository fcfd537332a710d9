"""
Write timestamps.

Catalog ordering sorts on bumped_at, so two writes must never share a
timestamp. MonotonicClock hands out naive UTC datetimes that strictly
increase within the process, even if the wall clock stalls or steps back.
"""
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Return current UTC time as a naive datetime (SQLite doesn't store tz info)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MonotonicClock:
    """Strictly increasing naive-UTC timestamps, safe across threads."""

    def __init__(self, source: Optional[Callable[[], datetime]] = None):
        self._source = source or utcnow
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._source()
            if self._last is not None and current <= self._last:
                current = self._last + _TICK
            self._last = current
            return current

    __call__ = now
