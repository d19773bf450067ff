# src/cvchat/adapters/kv_memory.py
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple


class MemoryKV:
    """
    In-process LRU with per-key expiry. Used locally and in tests;
    the Lambda path swaps in DynamoKV.
    """

    def __init__(self, max_items: int = 1000, default_ttl: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.max_items = max_items
        self.default_ttl = default_ttl
        self.clock = clock
        self._lru: "OrderedDict[str, Tuple[Any, Optional[float]]]" = OrderedDict()
        self._lock = threading.Lock()

    def _expires(self, ttl_seconds: Optional[int]) -> Optional[float]:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        return self.clock() + ttl if ttl else None

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._lru.get(key)
        if entry is None:
            return None
        if entry[1] is not None and entry[1] <= self.clock():
            del self._lru[key]
            return None
        self._lru.move_to_end(key)
        return entry

    def _set(self, key: str, value: Any, expires_at: Optional[float]):
        self._lru[key] = (value, expires_at)
        self._lru.move_to_end(key)
        while len(self._lru) > self.max_items:
            self._lru.popitem(last=False)

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._set(key, value, self._expires(ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._lru.pop(key, None)

    def add(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._set(key, value, self._expires(ttl_seconds))
            return True

    def incr(self, key: str, amount: float, ttl_seconds: Optional[int] = None) -> float:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                value, expires_at = 0, self._expires(ttl_seconds)
            else:
                value, expires_at = entry
            value = (value or 0) + amount
            self._set(key, value, expires_at)
            return value

    def __len__(self) -> int:
        return len(self._lru)
