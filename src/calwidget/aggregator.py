"""Multi-account calendar aggregation and change detection.

One :class:`CalendarAggregator` is constructed per process.  Each
``refresh()`` cycle:

1. asks the :class:`~calwidget.tokens.TokenRefresher` for live tokens;
2. fetches every account's calendar list and tags each calendar with the
   account that owns it;
3. picks the calendars to query (the configured selection, minus calendars
   that no longer exist, or everything when nothing is selected);
4. fetches the current local Monday-to-Sunday week of events per calendar,
   annotating color, calendar name and the user's response status;
5. compares event signatures with the previous successful cycle and reports
   new or changed event ids.

Per-account and per-calendar fetches produce :class:`FetchOutcome` records;
a failed item is logged and skipped so one broken account or calendar never
aborts the cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

import structlog
from opentelemetry import trace

from calwidget.colors import resolve_calendar_color
from calwidget.core.telemetry import get_tracer
from calwidget.google_api import GoogleApiClient
from calwidget.models import (
    AccountToken,
    CalendarEvent,
    CalendarListEntry,
    RefreshResult,
    event_from_google,
)
from calwidget.settings import SettingsStore
from calwidget.timeutil import week_end_iso, week_start_iso
from calwidget.tokens import TokenRefresher

logger = logging.getLogger(__name__)

ERROR_NOT_AUTHENTICATED = "Not authenticated. Sign in again."

T = TypeVar("T")

EventsObserver = Callable[[list[CalendarEvent]], None]
CalendarsObserver = Callable[[list[CalendarListEntry]], None]
NewEventsObserver = Callable[[list[str]], None]


@dataclass
class FetchOutcome(Generic[T]):
    """Result of fetching one item (an account's calendars or a calendar's events)."""

    key: str
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def select_calendar_ids(
    calendars: Sequence[CalendarListEntry], selected_ids: Iterable[str]
) -> list[str]:
    """Calendar ids to query this cycle.

    A non-empty selection is intersected with the calendars that exist and
    stale ids are dropped.  An empty selection, or one where every id is
    stale, means every calendar.
    """
    available = list(dict.fromkeys(calendar.id for calendar in calendars))
    existing = set(available)
    selected = [
        calendar_id for calendar_id in dict.fromkeys(selected_ids) if calendar_id in existing
    ]
    return selected or available


def detect_changes(
    events: Sequence[CalendarEvent],
    previous_ids: set[str],
    previous_signatures: dict[str, str],
) -> list[str]:
    """Ids of events that are new, or whose signature differs from last cycle.

    With no previous cycle (``previous_ids`` empty) nothing is reported: the
    first cycle only seeds the baseline.
    """
    if not previous_ids:
        return []
    changed: list[str] = []
    for event in events:
        if event.id not in previous_ids:
            changed.append(event.id)
            continue
        previous = previous_signatures.get(event.id)
        if previous is not None and previous != event.signature():
            changed.append(event.id)
    return changed


class CalendarAggregator:
    """Owns the retained event snapshot and the polling scheduler."""

    def __init__(
        self,
        refresher: TokenRefresher,
        api: GoogleApiClient,
        settings: SettingsStore,
        *,
        on_events: EventsObserver,
        on_calendars: CalendarsObserver,
        on_new_events: NewEventsObserver | None = None,
        now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._refresher = refresher
        self._api = api
        self._settings = settings
        self._on_events = on_events
        self._on_calendars = on_calendars
        self._on_new_events = on_new_events
        self._now = now
        self._sleep = sleep
        self._tracer = get_tracer()

        self._last_successful_events: list[CalendarEvent] = []
        self._last_event_ids: set[str] = set()
        self._last_event_signatures: dict[str, str] = {}
        self._scheduler_task: asyncio.Task | None = None

    @property
    def last_successful_events(self) -> list[CalendarEvent]:
        return list(self._last_successful_events)

    # ------------------------------------------------------------------
    # Refresh cycle
    # ------------------------------------------------------------------

    async def refresh(self) -> RefreshResult:
        """Run one aggregation cycle; never raises."""
        with self._tracer.start_as_current_span("calwidget.refresh") as span:
            try:
                return await self._refresh(span)
            except Exception as exc:
                logger.error("Calendar refresh failed: %s", exc, exc_info=True)
                span.record_exception(exc)
                self._on_events(self.last_successful_events)
                return RefreshResult(success=False, error=str(exc))

    async def _refresh(self, span: trace.Span) -> RefreshResult:
        now = self._now()
        tokens = await self._refresher.get_valid_access_tokens()
        span.set_attribute("calwidget.accounts", len(tokens))
        if not tokens:
            logger.info("Refresh skipped: no authenticated accounts")
            self._on_events(self.last_successful_events)
            self._on_calendars([])
            return RefreshResult(success=False, error=ERROR_NOT_AUTHENTICATED)

        calendar_outcomes = await self._fetch_calendar_lists(tokens)
        all_calendars = [
            calendar
            for outcome in calendar_outcomes
            if outcome.ok and outcome.value is not None
            for calendar in outcome.value
        ]
        self._on_calendars(all_calendars)

        target_ids = select_calendar_ids(all_calendars, self._settings.get().selected_calendar_ids)
        span.set_attribute("calwidget.calendars", len(target_ids))

        event_outcomes = await self._fetch_events(
            target_ids,
            all_calendars,
            {token.email: token.access_token for token in tokens},
            time_min=week_start_iso(now),
            time_max=week_end_iso(now),
        )
        all_events = [
            event
            for outcome in event_outcomes
            if outcome.ok and outcome.value is not None
            for event in outcome.value
        ]
        span.set_attribute("calwidget.events", len(all_events))

        if self._on_new_events is not None:
            changed_ids = detect_changes(
                all_events, self._last_event_ids, self._last_event_signatures
            )
            if changed_ids:
                logger.info("Detected %d new or changed event(s)", len(changed_ids))
                self._on_new_events(changed_ids)

        self._last_event_ids = {event.id for event in all_events}
        self._last_event_signatures = {event.id: event.signature() for event in all_events}
        self._last_successful_events = all_events
        self._on_events(list(all_events))
        logger.debug(
            "Refresh complete: %d account(s), %d calendar(s), %d event(s)",
            len(tokens),
            len(target_ids),
            len(all_events),
        )
        return RefreshResult(success=True)

    async def _fetch_calendar_lists(
        self, tokens: Sequence[AccountToken]
    ) -> list[FetchOutcome[list[CalendarListEntry]]]:
        outcomes: list[FetchOutcome[list[CalendarListEntry]]] = []
        for token in tokens:
            with structlog.contextvars.bound_contextvars(account=token.email):
                try:
                    calendars = await self._api.list_calendars(token.access_token)
                except Exception as exc:
                    logger.warning("Skipping account %s: %s", token.email, exc)
                    outcomes.append(FetchOutcome(key=token.email, error=exc))
                    continue
            tagged = [
                calendar.model_copy(update={"account_email": token.email}) for calendar in calendars
            ]
            outcomes.append(FetchOutcome(key=token.email, value=tagged))
        return outcomes

    async def _fetch_events(
        self,
        calendar_ids: Sequence[str],
        calendars: Sequence[CalendarListEntry],
        token_by_email: dict[str, str],
        *,
        time_min: str,
        time_max: str,
    ) -> list[FetchOutcome[list[CalendarEvent]]]:
        calendar_by_id: dict[str, CalendarListEntry] = {}
        for calendar in calendars:
            calendar_by_id.setdefault(calendar.id, calendar)

        outcomes: list[FetchOutcome[list[CalendarEvent]]] = []
        for calendar_id in calendar_ids:
            calendar = calendar_by_id.get(calendar_id)
            account_email = calendar.account_email if calendar is not None else None
            access_token = token_by_email.get(account_email) if account_email else None
            if calendar is None or account_email is None or not access_token:
                continue

            with structlog.contextvars.bound_contextvars(account=account_email):
                try:
                    items = await self._api.list_events(
                        access_token, calendar_id, time_min=time_min, time_max=time_max
                    )
                    color = resolve_calendar_color(calendar_id, calendar.background_color)
                    events = [
                        event_from_google(
                            item,
                            calendar_id=calendar_id,
                            calendar_color=color,
                            calendar_summary=calendar.summary,
                            account_email=account_email,
                        )
                        for item in items
                    ]
                except Exception as exc:
                    logger.warning("Skipping calendar %r: %s", calendar_id, exc)
                    outcomes.append(FetchOutcome(key=calendar_id, error=exc))
                    continue
            outcomes.append(FetchOutcome(key=calendar_id, value=events))
        return outcomes

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    @property
    def scheduler_running(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    def start_scheduler(self) -> None:
        """(Re)start periodic refreshes at the configured interval (30 s minimum)."""
        self.stop_scheduler()
        interval = self._settings.get().effective_refresh_interval
        self._scheduler_task = asyncio.create_task(
            self._run_scheduler(interval), name="calendar-refresh-scheduler"
        )
        logger.info("Calendar refresh scheduler started (interval=%ds)", interval)

    def stop_scheduler(self) -> None:
        if self._scheduler_task is not None and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            logger.debug("Calendar refresh scheduler stopped")
        self._scheduler_task = None

    async def _run_scheduler(self, interval_seconds: int) -> None:
        while True:
            await self._sleep(interval_seconds)
            try:
                result = await self.refresh()
            except Exception as exc:
                logger.error("Scheduled calendar refresh error: %s", exc, exc_info=True)
                continue
            if not result.success:
                logger.debug("Scheduled calendar refresh failed: %s", result.error)
