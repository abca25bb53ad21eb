"""Data shapes shared by the aggregator, the API client and observers.

Field names are snake_case in Python; ``model_dump(by_alias=True)`` yields the
camelCase JSON that the widget front end consumes.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CalendarListEntry(_WireModel):
    """One entry of an account's calendar list."""

    id: str
    summary: str
    primary: bool = False
    background_color: str | None = Field(default=None, alias="backgroundColor")
    # Owning account; set by the aggregator so events can be fetched with its token.
    account_email: str | None = Field(default=None, alias="accountEmail")


class EventTime(_WireModel):
    """Start or end of an event: ``date`` for all-day events, ``date_time`` otherwise."""

    date: str | None = None
    date_time: str | None = Field(default=None, alias="dateTime")

    @property
    def value(self) -> str:
        """The date when present, else the date-time, else an empty string."""
        return self.date or self.date_time or ""


class EventAttendee(_WireModel):
    email: str
    display_name: str | None = Field(default=None, alias="displayName")
    response_status: str | None = Field(default=None, alias="responseStatus")


class CalendarEvent(_WireModel):
    """Normalized event annotated with its calendar and the user's response."""

    id: str
    calendar_id: str = Field(alias="calendarId")
    calendar_summary: str | None = Field(default=None, alias="calendarSummary")
    summary: str = ""
    description: str | None = None
    start: EventTime = Field(default_factory=EventTime)
    end: EventTime = Field(default_factory=EventTime)
    html_link: str | None = Field(default=None, alias="htmlLink")
    color_id: str | None = Field(default=None, alias="colorId")
    status: str | None = None
    calendar_color: str | None = Field(default=None, alias="calendarColor")
    my_response_status: str | None = Field(default=None, alias="myResponseStatus")
    attendees: list[EventAttendee] | None = None
    hangout_link: str | None = Field(default=None, alias="hangoutLink")

    def signature(self) -> str:
        """Fingerprint used to tell whether an event changed between refreshes."""
        return f"{self.id}|{self.summary}|{self.start.value}|{self.end.value}|{self.status or ''}"


class AccountToken(_WireModel):
    """A live access token for one vault account."""

    email: str
    picture: str | None = None
    access_token: str = Field(alias="accessToken")

    def __repr__(self) -> str:
        return (
            f"AccountToken(email={self.email!r}, picture={self.picture!r}, "
            f"access_token=<REDACTED>)"
        )

    __str__ = __repr__


class OperationResult(_WireModel):
    """``{success, error?}`` result returned by public operations."""

    success: bool
    error: str | None = None


class RefreshResult(OperationResult):
    pass


class SignInResult(OperationResult):
    pass


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _event_time(value: Any) -> EventTime:
    if not isinstance(value, dict):
        return EventTime()
    return EventTime(
        date=_optional_str(value.get("date")),
        date_time=_optional_str(value.get("dateTime")),
    )


def resolve_response_status(
    attendees: list[EventAttendee] | None, account_email: str | None
) -> str | None:
    """Response status of the attendee matching *account_email*, case-insensitively."""
    if not account_email or not attendees:
        return None
    wanted = account_email.lower()
    for attendee in attendees:
        if attendee.email.lower() == wanted:
            return attendee.response_status
    return None


def event_from_google(
    item: dict[str, Any],
    *,
    calendar_id: str,
    calendar_color: str | None = None,
    calendar_summary: str | None = None,
    account_email: str | None = None,
) -> CalendarEvent:
    """Map a Google Calendar events-list item onto :class:`CalendarEvent`."""
    attendees: list[EventAttendee] | None = None
    raw_attendees = item.get("attendees")
    if isinstance(raw_attendees, list):
        attendees = [
            EventAttendee(
                email=_optional_str(entry.get("email")) or "",
                display_name=_optional_str(entry.get("displayName")),
                response_status=_optional_str(entry.get("responseStatus")),
            )
            for entry in raw_attendees
            if isinstance(entry, dict)
        ]

    return CalendarEvent(
        id=_optional_str(item.get("id")) or "",
        calendar_id=calendar_id,
        calendar_summary=calendar_summary,
        summary=_optional_str(item.get("summary")) or "",
        description=_optional_str(item.get("description")),
        start=_event_time(item.get("start")),
        end=_event_time(item.get("end")),
        html_link=_optional_str(item.get("htmlLink")),
        color_id=_optional_str(item.get("colorId")),
        status=_optional_str(item.get("status")),
        calendar_color=calendar_color,
        my_response_status=resolve_response_status(attendees, account_email),
        attendees=attendees,
        hangout_link=_optional_str(item.get("hangoutLink")),
    )
