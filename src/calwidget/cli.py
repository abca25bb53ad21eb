"""CLI for the calendar widget: sign in, inspect accounts and show the week."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import click
import httpx
from pydantic import ValidationError

from calwidget.aggregator import CalendarAggregator
from calwidget.config import AppConfig, ConfigError, load_config
from calwidget.core.logging import configure_logging
from calwidget.core.telemetry import init_telemetry
from calwidget.crypto import TokenCipher
from calwidget.google_api import GoogleApiClient
from calwidget.models import CalendarEvent, CalendarListEntry, SignInResult
from calwidget.settings import SettingsStore
from calwidget.signin import SignInFlow
from calwidget.storage import JsonFileStore
from calwidget.timeutil import is_all_day_event, minutes_since_midnight, parse_event_date, week_days
from calwidget.tokens import TokenRefresher
from calwidget.vault import CredentialVault

logger = logging.getLogger(__name__)

_TOKEN_FILE_MODE = 0o600


@dataclass
class WidgetServices:
    """Everything one CLI command needs, wired against one shared HTTP client."""

    config: AppConfig
    settings: SettingsStore
    vault: CredentialVault
    api: GoogleApiClient
    refresher: TokenRefresher


def build_cipher(config: AppConfig) -> TokenCipher:
    if config.storage.secure:
        return TokenCipher.from_key_file(config.key_path)
    logger.warning("Secure token storage disabled; refresh tokens are only base64-encoded")
    return TokenCipher.insecure()


def open_settings(config: AppConfig) -> SettingsStore:
    return SettingsStore(JsonFileStore(config.settings_path))


def open_vault(config: AppConfig) -> CredentialVault:
    store = JsonFileStore(config.tokens_path, file_mode=_TOKEN_FILE_MODE)
    return CredentialVault(store, build_cipher(config))


@asynccontextmanager
async def widget_services(config: AppConfig) -> AsyncIterator[WidgetServices]:
    async with httpx.AsyncClient(timeout=config.http_timeout_s) as http_client:
        settings = open_settings(config)
        vault = open_vault(config)
        api = GoogleApiClient(http_client)
        yield WidgetServices(
            config=config,
            settings=settings,
            vault=vault,
            api=api,
            refresher=TokenRefresher(vault, settings, api),
        )


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _event_line(event: CalendarEvent) -> str:
    title = event.summary or "(no title)"
    response = f" [{event.my_response_status}]" if event.my_response_status else ""
    calendar = f"  ({event.calendar_summary})" if event.calendar_summary else ""
    if is_all_day_event(event.start):
        return f"    all day  {title}{response}{calendar}"
    start = parse_event_date(event.start)
    end = parse_event_date(event.end)
    when = start.strftime("%H:%M") if start else "??:??"
    if end:
        when = f"{when}-{end.strftime('%H:%M')}"
    return f"    {when:<11}  {title}{response}{calendar}"


def _event_sort_key(event: CalendarEvent) -> tuple[int, int]:
    if is_all_day_event(event.start):
        return (0, 0)
    start = parse_event_date(event.start)
    return (1, minutes_since_midnight(start) if start else 0)


def render_week(
    events: list[CalendarEvent], now: datetime, *, show_weekends: bool
) -> list[str]:
    """Text lines for the week containing *now*, one block per day."""
    lines: list[str] = []
    for day in week_days(now):
        if not show_weekends and day.date.weekday() >= 5:
            continue
        todays = [
            event
            for event in events
            if (start := parse_event_date(event.start)) is not None and start.date() == day.date
        ]
        marker = " (today)" if day.date == now.date() else ""
        lines.append(f"{day.label} {day.key}{marker}")
        if not todays:
            lines.append("    -")
        for event in sorted(todays, key=_event_sort_key):
            lines.append(_event_line(event))
    return lines


def _calendar_line(calendar: CalendarListEntry) -> str:
    primary = " (primary)" if calendar.primary else ""
    return f"  {calendar.summary}{primary}  id={calendar.id}  account={calendar.account_email}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory containing calwidget.toml (default: $CALWIDGET_HOME or ~/.config/calwidget)",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None) -> None:
    """Google Calendar week widget."""
    try:
        config = load_config(config_dir)
    except ConfigError as exc:
        click.echo(f"Invalid configuration: {exc}")
        sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        instance_name=ctx.invoked_subcommand,
    )
    init_telemetry("calwidget")
    ctx.obj = config


@cli.command()
@click.pass_obj
def signin(config: AppConfig) -> None:
    """Sign in to a Google account in the browser and add it to the widget."""
    click.echo("Opening the browser for Google sign-in...")
    result = asyncio.run(_signin(config))
    if not result.success:
        click.echo(f"Sign in failed: {result.error}")
        sys.exit(1)
    click.echo("Signed in.")


async def _signin(config: AppConfig) -> SignInResult:
    async with widget_services(config) as services:
        flow = SignInFlow(
            services.vault,
            services.settings,
            services.api,
            timeout_s=config.signin_timeout_s,
        )
        return await flow.sign_in()


@cli.command()
@click.option("--email", default=None, help="Account to remove (default: all accounts)")
@click.pass_obj
def signout(config: AppConfig, email: str | None) -> None:
    """Forget one signed-in account, or all of them."""
    open_vault(config).remove_account(email)
    click.echo(f"Signed out {email}." if email else "Signed out all accounts.")


@cli.command()
@click.pass_obj
def accounts(config: AppConfig) -> None:
    """List signed-in accounts."""
    profiles = open_vault(config).profiles()
    if not profiles:
        click.echo("No accounts. Run `calwidget signin`.")
        return
    for index, profile in enumerate(profiles):
        primary = " (primary)" if index == 0 else ""
        click.echo(f"{profile.email}{primary}")


@cli.command()
@click.option("--calendars", "show_calendars", is_flag=True, help="Also list fetched calendars")
@click.pass_obj
def refresh(config: AppConfig, show_calendars: bool) -> None:
    """Fetch this week's events once and print them."""
    sys.exit(asyncio.run(_refresh_once(config, show_calendars)))


async def _refresh_once(config: AppConfig, show_calendars: bool) -> int:
    captured: dict[str, list] = {"events": [], "calendars": []}

    async with widget_services(config) as services:
        aggregator = CalendarAggregator(
            services.refresher,
            services.api,
            services.settings,
            on_events=lambda events: captured.__setitem__("events", events),
            on_calendars=lambda calendars: captured.__setitem__("calendars", calendars),
        )
        result = await aggregator.refresh()
        show_weekends = services.settings.get().show_weekends

    if show_calendars:
        click.echo("Calendars:")
        for calendar in captured["calendars"]:
            click.echo(_calendar_line(calendar))
    if not result.success:
        click.echo(f"Refresh failed: {result.error}")
        return 1
    now = datetime.now().astimezone()
    for line in render_week(captured["events"], now, show_weekends=show_weekends):
        click.echo(line)
    return 0


@cli.command()
@click.pass_obj
def watch(config: AppConfig) -> None:
    """Refresh on the configured interval and report new or changed events."""
    asyncio.run(_watch(config))


async def _watch(config: AppConfig) -> None:
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    def _on_events(events: list[CalendarEvent]) -> None:
        click.echo(f"{datetime.now():%H:%M:%S} {len(events)} event(s) this week")

    def _on_new_events(event_ids: list[str]) -> None:
        click.echo(f"{datetime.now():%H:%M:%S} {len(event_ids)} new or changed event(s)")

    async with widget_services(config) as services:
        aggregator = CalendarAggregator(
            services.refresher,
            services.api,
            services.settings,
            on_events=_on_events,
            on_calendars=lambda calendars: None,
            on_new_events=_on_new_events,
        )
        result = await aggregator.refresh()
        if not result.success:
            click.echo(f"Refresh failed: {result.error}")
        aggregator.start_scheduler()
        try:
            await shutdown_event.wait()
        finally:
            aggregator.stop_scheduler()


# ---------------------------------------------------------------------------
# settings
# ---------------------------------------------------------------------------


@cli.group("settings")
def settings_group() -> None:
    """Show or change widget settings."""


@settings_group.command("show")
@click.pass_obj
def settings_show(config: AppConfig) -> None:
    """Print the current settings (the client secret is redacted)."""
    current = open_settings(config).get()
    click.echo(f"settings file:     {config.settings_path}")
    click.echo(f"client id:         {current.google_client_id or '(not set)'}")
    secret = "<REDACTED>" if current.google_client_secret else "(not set)"
    click.echo(f"client secret:     {secret}")
    selected = ", ".join(current.selected_calendar_ids) or "(all calendars)"
    click.echo(f"calendars:         {selected}")
    click.echo(
        f"refresh interval:  {current.refresh_interval_seconds}s "
        f"(effective {current.effective_refresh_interval}s)"
    )
    click.echo(f"show weekends:     {'yes' if current.show_weekends else 'no'}")


@settings_group.command("set")
@click.option("--client-id", default=None, help="Google OAuth client id")
@click.option("--client-secret", default=None, help="Google OAuth client secret")
@click.option("--calendar", "calendars", multiple=True, help="Calendar id to show (repeatable)")
@click.option("--all-calendars", is_flag=True, help="Clear the selection (show every calendar)")
@click.option("--interval", type=int, default=None, help="Refresh interval in seconds")
@click.option("--show-weekends/--hide-weekends", default=None)
@click.pass_obj
def settings_set(
    config: AppConfig,
    client_id: str | None,
    client_secret: str | None,
    calendars: tuple[str, ...],
    all_calendars: bool,
    interval: int | None,
    show_weekends: bool | None,
) -> None:
    """Change one or more settings."""
    selected: list[str] | None = None
    if all_calendars:
        selected = []
    elif calendars:
        selected = list(calendars)

    try:
        open_settings(config).update(
            google_client_id=client_id,
            google_client_secret=client_secret,
            selected_calendar_ids=selected,
            refresh_interval_seconds=interval,
            show_weekends=show_weekends,
        )
    except ValidationError as exc:
        click.echo(f"Invalid setting: {exc}")
        sys.exit(1)
    click.echo("Settings saved.")
