from __future__ import annotations

import threading

from unifiedauth.core.limits import RateLimiter

from .helpers.fakes import FakeClock


def test_rate_limit_exceeded_denied():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=60, max_events=10, time_fn=clock.time)
    for _ in range(10):
        assert limiter.check("password:alice@example.com").allowed is True
    d = limiter.check("password:alice@example.com")
    assert d.allowed is False
    assert d.remaining == 0
    assert 0 < d.retry_after_seconds <= 60


def test_rate_limit_recovers_after_window():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=60, max_events=2, time_fn=clock.time)
    assert limiter.can_send("k") is True
    assert limiter.can_send("k") is True
    assert limiter.can_send("k") is False
    clock.advance(60.1)
    assert limiter.can_send("k") is True


def test_keys_are_independent_and_case_insensitive():
    clock = FakeClock()
    limiter = RateLimiter(window_seconds=60, max_events=1, time_fn=clock.time)
    assert limiter.check("password:Alice@Example.com").allowed is True
    assert limiter.check("password:alice@example.com").allowed is False
    assert limiter.check("password:bob@example.com").allowed is True
    assert limiter.remaining("password:bob@example.com") == 0
    limiter.reset("password:bob@example.com")
    assert limiter.remaining("password:bob@example.com") == 1


def test_concurrent_checks_never_exceed_limit():
    limiter = RateLimiter(window_seconds=60, max_events=10)
    allowed = []
    lock = threading.Lock()

    def worker():
        ok = limiter.check("shared").allowed
        with lock:
            allowed.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert allowed.count(True) == 10
