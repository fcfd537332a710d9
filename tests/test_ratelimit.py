"""
Tests for the in-process IP rate limiter.
"""
import threading

import pytest

from agentboard.ratelimit import IpRateLimiter


class FakeClock:
    """Monotonic seconds under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestFixedWindow:

    def test_allows_up_to_limit(self, clock):
        limiter = IpRateLimiter(3, clock=clock)
        assert [limiter.allow("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_remaining_counts_down(self, clock):
        limiter = IpRateLimiter(2, clock=clock)
        assert limiter.check("ip").remaining == 1
        assert limiter.check("ip").remaining == 0

    def test_denial_carries_time_left_in_window(self, clock):
        limiter = IpRateLimiter(1, clock=clock)
        limiter.check("ip")
        clock.advance(15)
        decision = limiter.check("ip")
        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(45.0)

    def test_denied_requests_are_not_counted(self, clock):
        limiter = IpRateLimiter(1, clock=clock)
        limiter.check("ip")
        limiter.check("ip")
        limiter.check("ip")
        assert limiter.count("ip") == 1

    def test_window_resets_after_expiry(self, clock):
        limiter = IpRateLimiter(1, clock=clock)
        assert limiter.allow("ip")
        assert not limiter.allow("ip")
        clock.advance(60)
        assert limiter.allow("ip")

    def test_ips_are_independent(self, clock):
        limiter = IpRateLimiter(1, clock=clock)
        assert limiter.allow("a")
        assert limiter.allow("b")
        assert not limiter.allow("a")

    def test_disabled_always_allows(self, clock):
        limiter = IpRateLimiter(1, enabled=False, clock=clock)
        assert all(limiter.allow("ip") for _ in range(10))
        assert len(limiter) == 0

    @pytest.mark.parametrize("kwargs", [
        {"requests_per_minute": 0},
        {"requests_per_minute": 5, "window_seconds": 0},
    ])
    def test_rejects_non_positive_settings(self, kwargs):
        with pytest.raises(ValueError):
            IpRateLimiter(**kwargs)


class TestCleanup:

    def test_cleanup_drops_only_expired_windows(self, clock):
        limiter = IpRateLimiter(5, clock=clock)
        limiter.check("old")
        clock.advance(30)
        limiter.check("new")
        clock.advance(31)
        assert limiter.cleanup() == 1
        assert len(limiter) == 1
        assert limiter.count("new") == 1

    def test_count_is_zero_for_expired_window(self, clock):
        limiter = IpRateLimiter(5, clock=clock)
        limiter.check("ip")
        clock.advance(61)
        assert limiter.count("ip") == 0

    def test_clear(self, clock):
        limiter = IpRateLimiter(5, clock=clock)
        limiter.check("a")
        limiter.check("b")
        limiter.clear()
        assert len(limiter) == 0


class TestConcurrency:

    def test_concurrent_checks_never_exceed_limit(self, clock):
        limiter = IpRateLimiter(50, clock=clock)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                if limiter.allow("shared"):
                    with lock:
                        allowed.append(1)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(allowed) == 50
        assert limiter.count("shared") == 50
