"""Tests for the sliding-window rate limiter and client key derivation."""

import threading

from eli.serving.rate_limit import LOOPBACK_KEY, InMemoryRateLimiter, client_key


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


class TestInMemoryRateLimiter:

    def test_admits_exactly_limit_calls_in_window(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)

        results = [limiter.admit("1.2.3.4", 10, 60_000) for _ in range(11)]

        assert results[:10] == [True] * 10
        assert results[10] is False

    def test_rejected_calls_are_not_recorded(self):
        """A rejection must not extend the caller's lockout."""
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(3):
            assert limiter.admit("k", 3, 1_000)

        clock.now += 500
        assert limiter.admit("k", 3, 1_000) is False

        # Only the three admitted timestamps count; they expire at +1000
        clock.now += 501
        assert limiter.admit("k", 3, 1_000) is True

    def test_admissions_resume_after_window_elapses(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        for _ in range(2):
            limiter.admit("k", 2, 60_000)
        assert limiter.admit("k", 2, 60_000) is False

        clock.now += 60_000
        assert limiter.admit("k", 2, 60_000) is True

    def test_timestamp_exactly_at_window_start_is_dropped(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        limiter.admit("k", 1, 100)

        clock.now += 100
        assert limiter.admit("k", 1, 100) is True

    def test_sliding_not_fixed_window(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        limiter.admit("k", 2, 1_000)
        clock.now += 600
        limiter.admit("k", 2, 1_000)

        clock.now += 500   # first call expired, second still inside
        assert limiter.admit("k", 2, 1_000) is True
        assert limiter.admit("k", 2, 1_000) is False

    def test_keys_are_independent(self):
        limiter = InMemoryRateLimiter(clock=FakeClock())
        assert limiter.admit("a", 1, 60_000)
        assert limiter.admit("a", 1, 60_000) is False
        assert limiter.admit("b", 1, 60_000)
        assert limiter.tracked_keys() == 2

    def test_idle_keys_are_swept(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock, sweep_interval=4)
        assert limiter.admit("198.51.100.1", 5, 1_000)
        assert limiter.admit("198.51.100.2", 5, 1_000)
        assert limiter.tracked_keys() == 2

        clock.now += 500
        assert limiter.admit("198.51.100.3", 5, 1_000)

        # Fourth check sweeps the two keys last seen more than a window ago
        clock.now += 900
        assert limiter.admit("198.51.100.4", 5, 1_000)
        assert limiter.tracked_keys() == 2

    def test_sweep_keeps_active_callers_limited(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock, sweep_interval=2)
        assert limiter.admit("k", 2, 1_000)
        assert limiter.admit("k", 2, 1_000)
        assert limiter.admit("k", 2, 1_000) is False
        assert limiter.admit("k", 2, 1_000) is False

    def test_concurrent_admissions_respect_limit(self):
        limiter = InMemoryRateLimiter(clock=FakeClock())
        admitted = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                ok = limiter.admit("shared", 25, 60_000)
                with lock:
                    admitted.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(admitted) == 25


class TestClientKey:

    def test_first_forwarded_entry_is_used(self):
        assert client_key("203.0.113.7, 10.0.0.1, 10.0.0.2") == "203.0.113.7"

    def test_missing_header_falls_back_to_loopback(self):
        assert client_key(None) == LOOPBACK_KEY
        assert client_key("") == LOOPBACK_KEY
        assert client_key(" , 10.0.0.1") == LOOPBACK_KEY
