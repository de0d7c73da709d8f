"""
Tests for the connection rate limiter.
"""

import pytest
from hypothesis import given, settings, strategies as st

from lovculator_ws.components.connection.rate_limiter import ConnectionRateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestConnectionRateLimiter:
    """Sliding window of 15 attempts per 60 seconds per address."""

    def test_sixteenth_attempt_is_rejected(self):
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=15, window_seconds=60, clock=clock)

        for _ in range(15):
            assert limiter.allow("203.0.113.1") is True
            clock.advance(1)

        assert limiter.allow("203.0.113.1") is False

    def test_allowed_again_after_window(self):
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=15, window_seconds=60, clock=clock)

        for _ in range(15):
            limiter.allow("203.0.113.1")
        assert limiter.allow("203.0.113.1") is False

        clock.advance(60.5)
        assert limiter.allow("203.0.113.1") is True

    def test_rejected_attempts_are_not_recorded(self):
        """A hammered address regains access once its admitted attempts age out."""
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=2, window_seconds=10, clock=clock)

        assert limiter.allow("a")
        assert limiter.allow("a")
        for _ in range(50):
            clock.advance(0.1)
            assert limiter.allow("a") is False

        clock.advance(5.1)
        assert limiter.allow("a") is True

    def test_addresses_are_independent(self):
        limiter = ConnectionRateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
        assert limiter.allow("a")
        assert not limiter.allow("a")
        assert limiter.allow("b")

    def test_unknown_address_shares_a_bucket(self):
        limiter = ConnectionRateLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
        assert limiter.allow(None)
        assert not limiter.allow(None)

    def test_sweep_drops_expired_addresses(self):
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=5, window_seconds=60, clock=clock)
        limiter.allow("a")
        clock.advance(30)
        limiter.allow("b")

        clock.advance(31)
        assert limiter.sweep() == 1
        assert limiter.tracked_count == 1

        clock.advance(60)
        assert limiter.sweep() == 1
        assert limiter.tracked_count == 0

    def test_capacity_evicts_least_recent(self):
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=5, window_seconds=60, max_tracked=2, clock=clock)
        limiter.allow("a")
        clock.advance(1)
        limiter.allow("b")
        clock.advance(1)
        limiter.allow("c")

        assert limiter.tracked_count == 2
        assert limiter.get_stats()["evictions"] == 1

    def test_retry_after(self):
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=1, window_seconds=60, clock=clock)
        assert limiter.retry_after("a") == 0.0
        limiter.allow("a")
        clock.advance(20)
        assert limiter.retry_after("a") == pytest.approx(40.0)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            ConnectionRateLimiter(max_attempts=0, window_seconds=60)
        with pytest.raises(ValueError):
            ConnectionRateLimiter(max_attempts=1, window_seconds=0)

    @given(gaps=st.lists(st.floats(min_value=0, max_value=20), max_size=80))
    @settings(max_examples=60, deadline=None)
    def test_admitted_attempts_never_exceed_ceiling_in_any_window(self, gaps):
        """Property: no trailing 60s window ever holds more than 15 admitted attempts."""
        clock = FakeClock()
        limiter = ConnectionRateLimiter(max_attempts=15, window_seconds=60, clock=clock)
        admitted: list[float] = []

        for gap in gaps:
            clock.advance(gap)
            if limiter.allow("198.51.100.7"):
                admitted.append(clock.now)
            recent = [t for t in admitted if clock.now - t < 60]
            assert len(recent) <= 15
