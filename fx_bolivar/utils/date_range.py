"""Helpers for deriving local calendar days and history windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Tuple
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Caracas"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def resolve_timezone(tz: str | ZoneInfo | None) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    return ZoneInfo(tz or DEFAULT_TIMEZONE)


def local_time(moment: datetime, tz: str | ZoneInfo | None = None) -> datetime:
    """Convert ``moment`` into the configured local zone.

    Naive datetimes are assumed to be UTC.
    """

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(resolve_timezone(tz))


def day_key(moment: datetime, tz: str | ZoneInfo | None = None) -> date:
    """Return the local calendar day that ``moment`` falls on.

    This is the single day-truncation rule shared by the recorder and the
    notification engine: both the "same day" lookup and the "strictly earlier
    than today" baseline lookup compare against this value.
    """

    return local_time(moment, tz).date()


def in_daily_window(
    moment: datetime,
    *,
    hour: int,
    minutes: int,
    tz: str | ZoneInfo | None = None,
) -> bool:
    """Return True when local time is within ``hour:00`` .. ``hour:(minutes - 1)``."""

    local = local_time(moment, tz)
    return local.hour == hour and local.minute < minutes


@dataclass(frozen=True)
class DateRange:
    """Container representing a closed date range."""

    start: date
    end: date

    def as_tuple(self) -> Tuple[date, date]:
        """Return the range as a tuple of ``(start, end)``."""
        return (self.start, self.end)


def trailing_days(today: date, days: int) -> DateRange:
    """Return the window covering the last ``days`` days up to ``today``."""

    if days <= 0:
        raise ValueError("days must be positive")
    return DateRange(start=today - timedelta(days=days), end=today)


def retention_cutoff(today: date) -> date:
    """Return the first day that survives a one-year retention sweep."""

    try:
        return today.replace(year=today.year - 1)
    except ValueError:
        # 29 February rolls forward to 1 March of the previous year.
        return date(today.year - 1, 3, 1)


__all__ = [
    "Clock",
    "DEFAULT_TIMEZONE",
    "DateRange",
    "day_key",
    "in_daily_window",
    "local_time",
    "resolve_timezone",
    "retention_cutoff",
    "trailing_days",
    "utc_now",
]
