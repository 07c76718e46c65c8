"""Clock helpers for stored timestamps.

Columns hold naive values in the application timezone; entities and the
connection registry work with aware values in that same zone.
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from functools import lru_cache

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from server_hub.config import get_settings


@lru_cache(maxsize=1)
def _app_zone() -> tzinfo:
    name = (get_settings().app_timezone or "").strip()
    if not name or name.upper() in {"UTC", "GMT", "Z"}:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        pass
    # Fixed offsets such as ``UTC+05:30`` or ``-03:00``.
    offset = name.upper().removeprefix("UTC").removeprefix("GMT")
    try:
        return datetime.strptime(offset, "%z").tzinfo or timezone.utc
    except ValueError:
        return timezone.utc


def now_in_app_timezone() -> datetime:
    return datetime.now(tz=_app_zone())


def now_in_app_naive_datetime() -> datetime:
    """Current application time in the form stored by ``DateTime`` columns."""

    return now_in_app_timezone().replace(tzinfo=None)


def ensure_app_timezone(value: datetime | None) -> datetime | None:
    """Attach or convert ``value`` to the application timezone."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=_app_zone())
    return value.astimezone(_app_zone())


def ensure_app_naive_datetime(value: datetime | None) -> datetime | None:
    aware = ensure_app_timezone(value)
    return aware.replace(tzinfo=None) if aware is not None else None
