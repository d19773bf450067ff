from datetime import datetime, timezone

from cvchat.adapters.kv_memory import MemoryKV
from cvchat.core.quota import QuotaCounter


def _at(h, m=0):
    return datetime(2025, 1, 15, h, m, tzinfo=timezone.utc)


def test_counts_cost_and_calls():
    q = QuotaCounter(MemoryKV(), limit=20, clock=lambda: _at(10))
    q.record(5)
    q.record(5)

    st = q.status()
    assert st["date"] == "2025-01-15"
    assert st["used"] == 10
    assert st["remaining"] == 10
    assert st["inference_count"] == 2
    assert st["exceeded"] is False
    assert st["reset_at"] == "2025-01-16T00:00:00+00:00"


def test_limit_reached():
    q = QuotaCounter(MemoryKV(), limit=10, clock=lambda: _at(10))
    q.record(10)
    assert q.allowed() is False
    assert q.status()["remaining"] == 0


def test_keys_expire_at_utc_midnight():
    now = [_at(23, 59)]
    kv = MemoryKV(clock=lambda: now[0].timestamp())
    q = QuotaCounter(kv, limit=10, clock=lambda: now[0])
    q.record(10)
    assert q.allowed() is False

    now[0] = datetime(2025, 1, 16, 0, 0, tzinfo=timezone.utc)
    assert q.allowed() is True
    assert kv.get("quota:daily:2025-01-15") is None


def test_reset_clears_today():
    q = QuotaCounter(MemoryKV(), limit=10, clock=lambda: _at(9))
    q.record(10)
    q.reset()
    assert q.status()["used"] == 0
