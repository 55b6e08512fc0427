import pytest

from app.middleware.rate_limiter import RateLimiter


def test_allows_up_to_limit_then_denies(fake_clock):
    limiter = RateLimiter(limit=60, window_seconds=60, clock=fake_clock)

    results = [limiter.allow("ip:10.0.0.1") for _ in range(61)]

    assert results[:60] == [True] * 60
    assert results[60] is False


def test_window_resets_after_expiry(fake_clock):
    limiter = RateLimiter(limit=60, window_seconds=60, clock=fake_clock)
    for _ in range(61):
        limiter.allow("ip:10.0.0.1")

    fake_clock.advance(60)

    assert limiter.allow("ip:10.0.0.1") is True


def test_keys_are_independent(fake_clock):
    limiter = RateLimiter(limit=2, window_seconds=60, clock=fake_clock)

    assert limiter.allow("a") is True
    assert limiter.allow("a") is True
    assert limiter.allow("a") is False
    assert limiter.allow("b") is True


def test_denied_requests_do_not_extend_window(fake_clock):
    limiter = RateLimiter(limit=1, window_seconds=60, clock=fake_clock)
    limiter.allow("a")

    fake_clock.advance(30)
    allowed, info = limiter.check_rate_limit("a")
    assert allowed is False
    assert info["retry_after"] == 30
    assert info["remaining"] == 0

    fake_clock.advance(30)
    assert limiter.allow("a") is True


def test_info_reports_remaining(fake_clock):
    limiter = RateLimiter(limit=3, window_seconds=60, clock=fake_clock)

    _, info = limiter.check_rate_limit("a")
    assert info == {
        "allowed": True,
        "limit": 3,
        "remaining": 2,
        "retry_after": 60,
        "window_seconds": 60,
    }


def test_per_call_limit_override(fake_clock):
    limiter = RateLimiter(limit=60, window_seconds=60, clock=fake_clock)

    assert limiter.check_rate_limit("a", limit=1)[0] is True
    assert limiter.check_rate_limit("a", limit=1)[0] is False


def test_reset_forgets_keys(fake_clock):
    limiter = RateLimiter(limit=1, window_seconds=60, clock=fake_clock)
    limiter.allow("a")
    limiter.allow("b")

    limiter.reset("a")
    assert limiter.tracked_keys() == 1
    assert limiter.allow("a") is True

    limiter.reset()
    assert limiter.tracked_keys() == 0


def test_empty_key_rejected(fake_clock):
    limiter = RateLimiter(clock=fake_clock)

    with pytest.raises(ValueError):
        limiter.allow("")


def test_invalid_configuration():
    with pytest.raises(ValueError):
        RateLimiter(limit=0)
    with pytest.raises(ValueError):
        RateLimiter(window_seconds=0)
