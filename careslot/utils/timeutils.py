"""Timezone helpers. All instants are handled as aware UTC datetimes."""
from datetime import datetime, date, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from careslot.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored instant. SQLite drops tzinfo, so naive values are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def provider_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.DEFAULT_TIMEZONE)
    except ZoneInfoNotFoundError:
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def to_local(value: datetime, zone: ZoneInfo) -> datetime:
    """Aware instant -> naive wall-clock time in `zone`."""
    return as_utc(value).astimezone(zone).replace(tzinfo=None)


def local_day_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC instants of local midnight of `day` and of the following day."""
    start = datetime.combine(day, datetime.min.time(), tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
