# src/cvchat/core/ratelimit.py
import logging
import time
from typing import Any, Callable, Dict, Optional

from cvchat.core.errors import RateLimitError
from cvchat.core.ports import IKeyValueCache

RATE_PREFIX = "ratelimit"

logger = logging.getLogger("cvchat.ratelimit")


class RateLimiter:
    """
    Per-client fixed windows kept in the KV cache: requests per minute (plus a burst allowance)
    and requests per hour. Counters are bumped with atomic `incr`.
    """

    def __init__(
        self,
        cache: IKeyValueCache,
        per_minute: int = 10,
        per_hour: int = 50,
        burst: int = 2,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.per_minute = int(per_minute)
        self.per_hour = int(per_hour)
        self.burst = int(burst)
        self.enabled = enabled
        self.clock = clock

    def _keys(self, client: str, now: float):
        return (
            f"{RATE_PREFIX}:{client}:minute:{int(now // 60)}",
            f"{RATE_PREFIX}:{client}:hour:{int(now // 3600)}",
        )

    def check(self, client: Optional[str]) -> Dict[str, Any]:
        """Counts one request for `client`; raises RateLimitError once a window is exhausted."""
        if not self.enabled or not client:
            return {"enforced": False}
        now = self.clock()
        minute_key, hour_key = self._keys(client, now)
        minute = int(self.cache.incr(minute_key, 1, 120))
        hour = int(self.cache.incr(hour_key, 1, 7200))

        if minute > self.per_minute + self.burst:
            retry = 60 - int(now) % 60
            logger.info("[ratelimit] %s over minute limit (%d)", client, minute)
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {self.per_minute} requests per minute. Please wait {retry} seconds.",
                {"retry_after": retry},
            )
        if hour > self.per_hour:
            retry = 3600 - int(now) % 3600
            logger.info("[ratelimit] %s over hour limit (%d)", client, hour)
            raise RateLimitError(
                f"Hourly rate limit exceeded. Maximum {self.per_hour} requests per hour. "
                f"Please try again in {-(-retry // 60)} minutes.",
                {"retry_after": retry},
            )
        return {"enforced": True, "remaining": max(0, self.per_minute - minute)}

    def status(self, client: str) -> Dict[str, Any]:
        minute_key, hour_key = self._keys(client, self.clock())
        return {
            "minute_count": int(self.cache.get(minute_key) or 0),
            "hour_count": int(self.cache.get(hour_key) or 0),
            "minute_limit": self.per_minute,
            "hour_limit": self.per_hour,
        }
