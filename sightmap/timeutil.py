from datetime import datetime, timedelta, timezone
from typing import Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Naive values (SQLite round-trips) are taken to be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(s))


def time_window(center: datetime, seconds: int):
    delta = timedelta(seconds=seconds)
    return center - delta, center + delta
