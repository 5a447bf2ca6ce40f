from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_BUSINESS_UTC_OFFSET_HOURS = 2


def utcnow() -> datetime:
    """Aware 'now' in UTC."""
    return datetime.now(timezone.utc)


def business_timezone(offset_hours: int = DEFAULT_BUSINESS_UTC_OFFSET_HOURS) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def to_business_iso(
    instant: Optional[datetime] = None,
    offset_hours: int = DEFAULT_BUSINESS_UTC_OFFSET_HOURS,
) -> str:
    """
    Express an instant at the fixed business offset, e.g. '2026-03-01T14:05:09.120+02:00'.

    - None -> now
    - naive datetimes are interpreted as UTC
    - the device's local timezone never leaks into the result
    """
    if instant is None:
        instant = utcnow()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(business_timezone(offset_hours))
    return local.isoformat(timespec="milliseconds")


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string into an aware datetime.

    - None / "" -> None
    - "...Z" is accepted
    - naive values are interpreted as UTC
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
