"""
Clock helpers.

All persisted timestamps are UTC. SQLite hands datetimes back without
tzinfo, so anything read from the store goes through `as_utc` before
arithmetic.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nudgegate.core.errors import InvalidTimezoneError


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def load_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name or raise InvalidTimezoneError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(name) from exc


def utc_offset_hours(zone_name: str, at: datetime) -> float:
    offset = at.astimezone(load_zone(zone_name)).utcoffset() or timedelta(0)
    return offset.total_seconds() / 3600


def local_now(zone_name: str, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()).astimezone(load_zone(zone_name))


def local_day_start_utc(zone_name: str, now: Optional[datetime] = None) -> datetime:
    """UTC instant at which the user's current local day began."""
    local = local_now(zone_name, now)
    midnight = datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)
    return midnight.astimezone(timezone.utc)


def local_today(zone_name: str, now: Optional[datetime] = None) -> date:
    return local_now(zone_name, now).date()
