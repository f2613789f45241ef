"""
Slot labels in the host and client time zones.
Formats match what the booking UI renders (en-US, 12-hour clock).
"""
from datetime import datetime, timezone
from typing import Optional

import pytz


def parse_utc(value) -> Optional[datetime]:
    """Parse an ISO-8601 instant ("...Z" or with offset) into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value or "").strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00").replace("z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc(dt: datetime) -> str:
    """Canonical form used for storage and comparison: 2025-01-15T07:59:00.000Z"""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def get_zone(name: Optional[str]):
    if not name:
        return None
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        return None


def _clock(local: datetime) -> str:
    hour = local.hour % 12 or 12
    return f"{hour}:{local:%M} {local:%p}"


def host_date_label(utc_dt: datetime, zone_name: str) -> str:
    """'Wed Jan 15 2025' in the host zone."""
    zone = get_zone(zone_name)
    if zone is None:
        return ""
    local = utc_dt.astimezone(zone)
    return f"{local:%a} {local:%b} {local:%d} {local.year}"


def host_time_label(utc_dt: datetime, zone_name: str) -> str:
    """'1:29 PM' in the host zone."""
    zone = get_zone(zone_name)
    if zone is None:
        return ""
    return _clock(utc_dt.astimezone(zone))


def client_date_label(utc_dt: datetime, zone_name: str) -> str:
    """'Tuesday, January 14, 2025' in the client zone."""
    zone = get_zone(zone_name)
    if zone is None:
        return ""
    local = utc_dt.astimezone(zone)
    return f"{local:%A}, {local:%B} {local.day}, {local.year}"


def client_time_label(utc_dt: datetime, zone_name: str) -> str:
    zone = get_zone(zone_name)
    if zone is None:
        return ""
    return _clock(utc_dt.astimezone(zone))


def host_slot(utc_dt: datetime, zone_name: str) -> tuple[str, str]:
    return host_date_label(utc_dt, zone_name), host_time_label(utc_dt, zone_name)
