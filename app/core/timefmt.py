from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

_ISO_FMT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string, so stored timestamps sort lexically."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_ISO_FMT)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def format_duration(hours: float) -> str:
    """45m, 3h, 2d, 2d 4h."""
    hours = max(0.0, float(hours))
    if hours < 1:
        return f"{int(round(hours * 60))}m"
    if hours < 24:
        return f"{int(round(hours))}h"
    days = int(hours // 24)
    rem = int(round(hours % 24))
    if rem == 24:
        days, rem = days + 1, 0
    return f"{days}d {rem}h" if rem > 0 else f"{days}d"
