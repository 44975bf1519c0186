"""Calendar-day helpers for streaks and ranking windows.

All day boundaries are local midnights in the configured time zone
(``READQUEST_TIMEZONE``, UTC by default). Weeks are ISO weeks, Monday first.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from readquest.config import get_settings


def get_zone(tz_name: str | None = None) -> ZoneInfo:
    return ZoneInfo(tz_name or get_settings().timezone)


def local_now(now: datetime | None = None, tz_name: str | None = None) -> datetime:
    """Current time in the local zone. Naive ``now`` values are taken as local."""
    zone = get_zone(tz_name)
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        return now.replace(tzinfo=zone)
    return now.astimezone(zone)


def local_today(now: datetime | None = None, tz_name: str | None = None) -> date:
    return local_now(now, tz_name).date()


def to_local_date(value: datetime | date, tz_name: str | None = None) -> date:
    """Calendar day of a timestamp in the local zone."""
    if isinstance(value, datetime):
        return local_now(value, tz_name).date()
    return value


def get_monday(d: datetime | date) -> date:
    """Get the Monday of the ISO week containing d."""
    day = d.date() if isinstance(d, datetime) else d
    return day - timedelta(days=day.weekday())


def get_week_iso(d: datetime | date) -> str:
    """ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return d.strftime("%G-W%V")


def month_bounds(d: date) -> tuple[date, date]:
    """(first day, last day) of the month containing d."""
    first = d.replace(day=1)
    next_first = (first + timedelta(days=32)).replace(day=1)
    return first, next_first - timedelta(days=1)
