# src/cvchat/core/quota.py
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

from cvchat.core.ports import IKeyValueCache

QUOTA_PREFIX = "quota:daily"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuotaCounter:
    """Daily inference cost counter kept in the KV cache; keys expire at the next UTC midnight."""

    def __init__(self, cache: IKeyValueCache, limit: float, clock: Callable[[], datetime] = _utcnow):
        self.cache = cache
        self.limit = float(limit)
        self.clock = clock

    def _keys(self, now: datetime):
        day = now.strftime("%Y-%m-%d")
        base = f"{QUOTA_PREFIX}:{day}"
        return base, f"{base}:count"

    def _reset_at(self, now: datetime) -> datetime:
        return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    def _ttl(self, now: datetime) -> int:
        return max(1, int((self._reset_at(now) - now).total_seconds()))

    def status(self) -> Dict[str, Any]:
        now = self.clock()
        cost_key, count_key = self._keys(now)
        used = float(self.cache.get(cost_key) or 0.0)
        count = int(self.cache.get(count_key) or 0)
        return {
            "date": now.strftime("%Y-%m-%d"),
            "used": round(used, 2),
            "limit": self.limit,
            "remaining": round(max(0.0, self.limit - used), 2),
            "exceeded": used >= self.limit,
            "inference_count": count,
            "reset_at": self._reset_at(now).isoformat(),
        }

    def allowed(self) -> bool:
        return not self.status()["exceeded"]

    def record(self, cost: float) -> float:
        now = self.clock()
        cost_key, count_key = self._keys(now)
        ttl = self._ttl(now)
        used = self.cache.incr(cost_key, float(cost), ttl)
        self.cache.incr(count_key, 1, ttl)
        return used

    def reset(self) -> None:
        cost_key, count_key = self._keys(self.clock())
        self.cache.delete(cost_key)
        self.cache.delete(count_key)
