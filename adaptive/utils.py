from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Tuple

import pytz


# -----------------------
# Clock primitives
# -----------------------
class Clock:
    def now_utc(self) -> datetime:
        raise NotImplementedError


class RealClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    def __init__(self, dt_utc: datetime):
        if dt_utc.tzinfo is None:
            dt_utc = dt_utc.replace(tzinfo=timezone.utc)
        self._dt = dt_utc.astimezone(timezone.utc)

    @staticmethod
    def from_env(var: str = "NOW_UTC") -> Optional["FixedClock"]:
        val = os.getenv(var)
        if not val:
            return None
        return FixedClock(parse_any_datetime(val))

    def now_utc(self) -> datetime:
        return self._dt


def parse_any_datetime(s: str) -> datetime:
    s = s.strip()
    if re.fullmatch(r"\d{10}", s):
        return datetime.fromtimestamp(int(s), tz=timezone.utc)
    if re.fullmatch(r"\d{13}", s):
        return datetime.fromtimestamp(int(s) / 1000.0, tz=timezone.utc)
    s = s.replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as e:
        raise ValueError(f"Invalid datetime: {s!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def require_tz(name: str) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"Invalid IANA timezone: {name!r}") from e


# -----------------------
# Insights windows
# -----------------------
@dataclass(frozen=True)
class InsightsWindow:
    """Inclusive calendar-day range, as the Graph API `time_range` expects."""

    since: date
    until: date

    @property
    def since_str(self) -> str:
        return self.since.strftime("%Y-%m-%d")

    @property
    def until_str(self) -> str:
        return self.until.strftime("%Y-%m-%d")

    def as_time_range(self) -> dict:
        return {"since": self.since_str, "until": self.until_str}


def window_for_days(days: int, clock: Optional[Clock] = None, tz_name: str = "UTC") -> InsightsWindow:
    """Window from `days` days ago up to today, in the account timezone."""
    clock = clock or RealClock()
    now = clock.now_utc()
    local_now = now.astimezone(require_tz(tz_name))
    since = (local_now - timedelta(days=max(0, int(days)))).date()
    return InsightsWindow(since=since, until=local_now.date())


# -----------------------
# Request parameters
# -----------------------
def clamp(value: Any, lo: int, hi: int, default: Optional[int] = None) -> int:
    """Clamp a user-supplied integer into [lo, hi]; unparsable input falls back to `default` (or `lo`)."""
    try:
        v = int(float(value))
    except (TypeError, ValueError, OverflowError):
        v = default if default is not None else lo
    return max(lo, min(hi, v))


def parse_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in str(value).split(",") if part.strip())
