"""
Text renderings shared by the JSON and CSV exporters.
"""
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

NO_STATUS_CODE = -1


def ensure_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: Optional[datetime], tz_name: str = "UTC") -> Optional[str]:
    """
    Render as yyyy-MM-dd'T'HH:mm:ss.SSSZ, e.g. 2026-10-19T08:15:02.123+0000.
    Millisecond precision, numeric zone offset without colon.
    """
    if dt is None:
        return None
    local = ensure_utc(dt).astimezone(ZoneInfo(tz_name))
    return (
        local.strftime("%Y-%m-%dT%H:%M:%S")
        + f".{local.microsecond // 1000:03d}"
        + local.strftime("%z")
    )


def format_status_code(status_code: Optional[int]) -> Optional[str]:
    """16-bit status as 4 uppercase hex digits; the -1 sentinel renders as None."""
    if status_code is None or status_code == NO_STATUS_CODE:
        return None
    return f"{status_code & 0xFFFF:04X}"
