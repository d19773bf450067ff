import pytest

from cvchat.adapters.kv_memory import MemoryKV
from cvchat.core.errors import RateLimitError
from cvchat.core.ratelimit import RateLimiter

T0 = 1_699_999_200.0  # on an hour boundary


def _limiter(now, **kw):
    kv = MemoryKV(clock=lambda: now[0])
    return RateLimiter(kv, clock=lambda: now[0], **kw), kv


def test_minute_limit_includes_burst_allowance():
    now = [T0]
    rl, _ = _limiter(now, per_minute=10, per_hour=100, burst=2)

    for _ in range(12):
        rl.check("203.0.113.7")
    with pytest.raises(RateLimitError) as ei:
        rl.check("203.0.113.7")

    assert ei.value.status_code == 429
    assert ei.value.to_body()["retryAfter"] == 60
    # other clients are counted separately
    rl.check("198.51.100.2")


def test_minute_window_rolls_over():
    now = [T0]
    rl, _ = _limiter(now, per_minute=1, per_hour=100, burst=0)
    rl.check("203.0.113.7")
    with pytest.raises(RateLimitError):
        rl.check("203.0.113.7")

    now[0] += 60
    assert rl.check("203.0.113.7")["enforced"] is True


def test_hour_limit():
    now = [T0]
    rl, _ = _limiter(now, per_minute=100, per_hour=3, burst=0)
    for _ in range(3):
        rl.check("203.0.113.7")
        now[0] += 61

    with pytest.raises(RateLimitError) as ei:
        rl.check("203.0.113.7")
    assert "Hourly rate limit exceeded" in ei.value.message
    assert ei.value.details["retry_after"] == 3600 - 183


def test_unknown_client_and_disabled_limiter_pass_through():
    now = [T0]
    rl, kv = _limiter(now, per_minute=0, burst=0)
    for _ in range(5):
        assert rl.check(None) == {"enforced": False}
    assert len(kv) == 0

    off, _ = _limiter(now, per_minute=0, burst=0, enabled=False)
    assert off.check("203.0.113.7") == {"enforced": False}


def test_status_reports_current_windows():
    now = [T0]
    rl, _ = _limiter(now, per_minute=10, per_hour=50)
    rl.check("203.0.113.7")
    rl.check("203.0.113.7")
    assert rl.status("203.0.113.7") == {"minute_count": 2, "hour_count": 2, "minute_limit": 10, "hour_limit": 50}
