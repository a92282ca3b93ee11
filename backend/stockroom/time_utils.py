from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional, Union


def now_ms() -> int:
    """Current UTC time as integer epoch milliseconds (canonical storage form)."""
    return time.time_ns() // 1_000_000


def utcnow() -> datetime:
    """Server-side 'now' as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """
    Convert a datetime to epoch milliseconds.

    Naive datetimes are interpreted as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to aware UTC.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def coerce_epoch_ms(value: Union[None, int, str, datetime]) -> Optional[int]:
    """
    Accept epoch ms (int or digit string), ISO-8601 strings, or datetimes.

    Raises ValueError for anything else.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("invalid timestamp")
    if isinstance(value, int):
        return value
    if isinstance(value, datetime):
        return to_epoch_ms(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if s.lstrip("-").isdigit():
            return int(s)
        dt = parse_iso_datetime(s)
        if dt is None:
            raise ValueError("invalid timestamp")
        return to_epoch_ms(dt)
    raise ValueError("invalid timestamp")


def to_utc_z(value: Union[None, int, datetime]) -> Optional[str]:
    """
    Serializes epoch ms or a datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if value is None:
        return None
    if isinstance(value, int):
        dt = from_epoch_ms(value)
    else:
        dt = value
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
