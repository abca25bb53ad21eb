"""Tests for calwidget.timeutil.

Covers:
- Monday-to-Sunday week bounds in local time, including a DST transition week
- UTC ISO formatting with millisecond precision
- week_days() labels and keys
- all-day detection and event date parsing
"""

from __future__ import annotations

import sys
import time
from collections.abc import Iterator
from datetime import date, datetime

import pytest

from calwidget.models import EventTime
from calwidget.timeutil import (
    DAY_LABELS,
    is_all_day_event,
    minutes_since_midnight,
    parse_event_date,
    to_utc_iso,
    week_days,
    week_end,
    week_end_iso,
    week_start,
    week_start_iso,
)

pytestmark = pytest.mark.unit

WEDNESDAY = datetime(2024, 5, 15, 15, 30)


@pytest.fixture()
def berlin_tz(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    if sys.platform == "win32":
        pytest.skip("time.tzset() is POSIX only")
    monkeypatch.setenv("TZ", "CET-1CEST,M3.5.0,M10.5.0/3")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestWeekBounds:
    def test_wednesday_maps_to_monday_and_sunday(self) -> None:
        start = week_start(WEDNESDAY)
        end = week_end(WEDNESDAY)

        assert start.date() == date(2024, 5, 13)
        assert (start.hour, start.minute, start.second, start.microsecond) == (0, 0, 0, 0)
        assert end.date() == date(2024, 5, 19)
        assert (end.hour, end.minute, end.second, end.microsecond) == (23, 59, 59, 999_000)
        assert start.tzinfo is not None

    def test_monday_and_sunday_are_their_own_week(self) -> None:
        monday = datetime(2024, 5, 13, 0, 0)
        sunday = datetime(2024, 5, 19, 23, 59)
        assert week_start(monday).date() == date(2024, 5, 13)
        assert week_start(sunday).date() == date(2024, 5, 13)
        assert week_end(sunday).date() == date(2024, 5, 19)

    def test_dst_week(self, berlin_tz: None) -> None:
        # Clocks go forward on Sunday 2024-03-31 in Central Europe.
        day = datetime(2024, 3, 27, 12, 0)
        assert week_start_iso(day) == "2024-03-24T23:00:00.000Z"
        assert week_end_iso(day) == "2024-03-31T21:59:59.999Z"

    def test_aware_input_converted_to_local(self, berlin_tz: None) -> None:
        # Sunday 23:30 UTC is already Monday in Berlin.
        moment = datetime.fromisoformat("2024-05-19T23:30:00+00:00")
        assert week_start(moment).date() == date(2024, 5, 20)


class TestIsoFormatting:
    def test_millisecond_z_suffix(self) -> None:
        moment = datetime.fromisoformat("2024-05-13T08:09:10.123456+02:00")
        assert to_utc_iso(moment) == "2024-05-13T06:09:10.123Z"

    def test_week_iso_shape(self) -> None:
        value = week_start_iso(WEDNESDAY)
        assert value.endswith("Z")
        assert len(value) == len("2024-05-13T00:00:00.000Z")


class TestWeekDays:
    def test_seven_labelled_days(self) -> None:
        days = week_days(WEDNESDAY)
        assert [d.label for d in days] == list(DAY_LABELS)
        assert days[0].key == "2024-05-13"
        assert days[-1].key == "2024-05-19"
        assert days[2].date == date(2024, 5, 15)


class TestEventTimes:
    def test_all_day_detection(self) -> None:
        assert is_all_day_event(EventTime(date="2024-05-15")) is True
        assert is_all_day_event(EventTime(date_time="2024-05-15T09:00:00Z")) is False
        assert is_all_day_event(EventTime()) is False

    def test_parse_all_day_is_local_midnight(self) -> None:
        parsed = parse_event_date(EventTime(date="2024-05-15"))
        assert parsed is not None
        assert parsed.date() == date(2024, 5, 15)
        assert (parsed.hour, parsed.minute) == (0, 0)

    def test_parse_date_time(self, berlin_tz: None) -> None:
        parsed = parse_event_date(EventTime(date_time="2024-05-15T09:00:00Z"))
        assert parsed is not None
        assert (parsed.hour, parsed.minute) == (11, 0)
        assert minutes_since_midnight(parsed) == 11 * 60

    @pytest.mark.parametrize(
        "value", [EventTime(), EventTime(date="soon"), EventTime(date_time="later")]
    )
    def test_unparseable(self, value: EventTime) -> None:
        assert parse_event_date(value) is None
