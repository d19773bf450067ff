# src/cvchat/core/schedule.py
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from cvchat.core.errors import ScheduleError

_DAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_days(days: Tuple[int, ...]) -> str:
    days = tuple(sorted(days))
    if not days:
        return "no days"
    if days == tuple(range(days[0], days[-1] + 1)) and len(days) > 2:
        return f"{_DAY_LABELS[days[0]]}-{_DAY_LABELS[days[-1]]}"
    return ", ".join(_DAY_LABELS[d] for d in days)


@dataclass
class ScheduleGate:
    """Calendar predicate: admits requests on active weekdays within [start_hour, end_hour) local time."""

    start_hour: int = 8
    end_hour: int = 20
    days: Tuple[int, ...] = (0, 1, 2, 3, 4)
    tz_name: str = "Europe/London"
    bypass_phrase: str = ""
    enabled: bool = True
    clock: Callable[[], datetime] = _utcnow

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.tz_name)

    def window_text(self) -> str:
        return (
            f"{describe_days(self.days)}, {self.start_hour:02d}:00-{self.end_hour:02d}:00 "
            f"({self.tz_name})"
        )

    def is_open(self, at: Optional[datetime] = None) -> bool:
        now = (at or self.clock())
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self.tz)
        if local.weekday() not in self.days:
            return False
        return self.start_hour <= local.hour < self.end_hour

    def _bypassed(self, query: str, bypass: bool) -> bool:
        if bypass:
            return True
        phrase = (self.bypass_phrase or "").strip().lower()
        return bool(phrase) and phrase in (query or "").lower()

    def check(self, query: str = "", at: Optional[datetime] = None, bypass: bool = False) -> None:
        if not self.enabled or self._bypassed(query, bypass):
            return
        if not self.is_open(at):
            raise ScheduleError(
                f"The assistant is available {self.window_text()}. Please come back then.",
                {"window": self.window_text()},
            )

    def status(self) -> Dict[str, object]:
        now = self.clock()
        return {
            "enabled": self.enabled,
            "open": (not self.enabled) or self.is_open(now),
            "window": self.window_text(),
            "local_time": now.astimezone(self.tz).isoformat(),
        }
