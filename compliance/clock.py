from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigurationError, DataIntegrityError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown trading timezone: {name}") from exc


def require_aware(moment: datetime, label: str = "timestamp") -> datetime:
    if not isinstance(moment, datetime):
        raise DataIntegrityError(f"{label} is not a datetime: {moment!r}")
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise DataIntegrityError(f"{label} has no timezone: {moment.isoformat()}")
    return moment


def trading_date(moment: datetime, tz: tzinfo) -> date:
    return require_aware(moment).astimezone(tz).date()
