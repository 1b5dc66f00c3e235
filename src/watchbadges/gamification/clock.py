"""Time helpers: injected clock, day keys and ISO week keys."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_ms(dt: datetime) -> int:
    """Epoch milliseconds for dt (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def local_date(dt: datetime, tz_name: str = "UTC") -> date:
    """Calendar date of dt in the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(ZoneInfo(tz_name)).date()


def get_week_iso(dt: datetime | date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def get_monday(dt: datetime | date) -> date:
    """Get the Monday of the ISO week containing dt."""
    d = dt.date() if isinstance(dt, datetime) else dt
    return d - timedelta(days=d.weekday())


def seconds_until_week_end(now: datetime, tz_name: str = "UTC") -> int:
    """Seconds left until the next Monday 00:00 in the given timezone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    zone = ZoneInfo(tz_name)
    next_monday = get_monday(now.astimezone(zone)) + timedelta(days=7)
    week_end = datetime(next_monday.year, next_monday.month, next_monday.day, tzinfo=zone)
    # Compare in UTC; same-zone subtraction would ignore a DST shift.
    return max(0, int((week_end.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()))
