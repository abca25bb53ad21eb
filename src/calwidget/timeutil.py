"""Week-window helpers in the host's local timezone.

The widget always shows one Monday-to-Sunday week.  All functions accept
naive datetimes (interpreted as local wall time) or aware ones (converted to
local time first) and return aware local datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from calwidget.models import EventTime

DAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_END_OF_DAY = time(23, 59, 59, 999_000)


def _local_midnight(day: date, at: time = time.min) -> datetime:
    # astimezone() on a naive value attaches the local offset valid for that wall time.
    return datetime.combine(day, at).astimezone()


def _local_date(d: datetime) -> date:
    return d.astimezone().date()


def week_start(d: datetime) -> datetime:
    """Monday 00:00:00.000 of the week containing *d*."""
    day = _local_date(d)
    return _local_midnight(day - timedelta(days=day.weekday()))


def week_end(d: datetime) -> datetime:
    """Sunday 23:59:59.999 of the week containing *d*."""
    monday = week_start(d).date()
    return _local_midnight(monday + timedelta(days=6), _END_OF_DAY)


def to_utc_iso(d: datetime) -> str:
    """``YYYY-MM-DDTHH:MM:SS.mmmZ`` for the Calendar API's timeMin/timeMax."""
    return d.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def week_start_iso(d: datetime) -> str:
    return to_utc_iso(week_start(d))


def week_end_iso(d: datetime) -> str:
    return to_utc_iso(week_end(d))


@dataclass(frozen=True)
class WeekDay:
    key: str  # YYYY-MM-DD
    label: str
    date: date


def week_days(d: datetime) -> list[WeekDay]:
    """The seven days (Mon-Sun) of the week containing *d*."""
    monday = week_start(d).date()
    days = []
    for offset, label in enumerate(DAY_LABELS):
        day = monday + timedelta(days=offset)
        days.append(WeekDay(key=day.isoformat(), label=label, date=day))
    return days


def is_all_day_event(start: EventTime) -> bool:
    return bool(start.date and not start.date_time)


def parse_event_date(value: EventTime) -> datetime | None:
    """Local datetime for an event boundary; all-day dates map to local midnight."""
    if value.date_time:
        try:
            return datetime.fromisoformat(value.date_time).astimezone()
        except ValueError:
            return None
    if value.date:
        try:
            return _local_midnight(date.fromisoformat(value.date))
        except ValueError:
            return None
    return None


def minutes_since_midnight(d: datetime) -> int:
    """Local wall-clock minutes elapsed since 00:00, used to place timed events."""
    local = d.astimezone()
    return local.hour * 60 + local.minute
