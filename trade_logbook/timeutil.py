from __future__ import annotations

import datetime as dt
import os
import time
from functools import lru_cache
from typing import Any, Optional
from zoneinfo import ZoneInfo

UTC = dt.timezone.utc

DAY_SECONDS = 86400


def unix_now() -> int:
    return int(time.time())


def days_ago(days: float, *, now: Optional[int] = None) -> int:
    base = unix_now() if now is None else int(now)
    return base - int(round(float(days) * DAY_SECONDS))


def utcfromtimestamp(ts: float) -> dt.datetime:
    return dt.datetime.fromtimestamp(ts, UTC)


@lru_cache(maxsize=32)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def ui_timezone_name() -> str:
    return os.environ.get("UI_TIMEZONE", "UTC").strip() or "UTC"


def parse_timestamp(value: Any) -> Optional[int]:
    """
    Accept unix seconds (int/float/numeric string) or an ISO-8601 datetime/date.
    Naive datetimes are treated as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    s = str(value).strip()
    if not s:
        return None
    if s.lstrip("-").isdigit():
        return int(s)
    s = s.replace("Z", "+00:00")
    try:
        d = dt.datetime.fromisoformat(s)
    except ValueError:
        return None
    if d.tzinfo is None:
        d = d.replace(tzinfo=UTC)
    return int(d.timestamp())


def format_ts(ts: Optional[int], fmt: str = "%Y-%m-%d %H:%M", tz_name: Optional[str] = None) -> str:
    if ts is None:
        return "—"
    tz = _zone(tz_name or ui_timezone_name())
    return utcfromtimestamp(int(ts)).astimezone(tz).strftime(fmt)
