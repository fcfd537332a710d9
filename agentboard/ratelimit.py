"""
In-process IP rate limiting.

Fixed window per source IP: at most `requests_per_minute` requests per
window, counter reset when the window expires. State lives in this process
only; it is not shared between instances and is lost on restart.

The application creates one limiter at startup and passes it to the
pipeline and the sweeper.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class RateWindow:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: float = 0.0  # seconds until the window resets (when denied)
    remaining: int = 0


class IpRateLimiter:
    """Fixed-window per-IP counter guarded by a lock."""

    def __init__(
        self,
        requests_per_minute: int,
        enabled: bool = True,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = requests_per_minute
        self.window_seconds = window_seconds
        self.enabled = enabled
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def check(self, ip: str) -> RateDecision:
        """Record a request from ip if the window has room."""
        if not self.enabled:
            return RateDecision(allowed=True, remaining=self.limit)

        now = self._clock()
        with self._lock:
            window = self._windows.get(ip)
            if window is None or now - window.window_start >= self.window_seconds:
                window = RateWindow(count=0, window_start=now)
                self._windows[ip] = window

            if window.count >= self.limit:
                retry_after = window.window_start + self.window_seconds - now
                return RateDecision(allowed=False, retry_after=max(0.0, retry_after))

            window.count += 1
            return RateDecision(allowed=True, remaining=self.limit - window.count)

    def allow(self, ip: str) -> bool:
        return self.check(ip).allowed

    def count(self, ip: str) -> int:
        """Requests counted for ip in its current window."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(ip)
            if window is None or now - window.window_start >= self.window_seconds:
                return 0
            return window.count

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                ip for ip, w in self._windows.items()
                if now - w.window_start >= self.window_seconds
            ]
            for ip in expired:
                del self._windows[ip]
        return len(expired)

    def clear(self) -> None:
        """Forget all windows (shutdown)."""
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
