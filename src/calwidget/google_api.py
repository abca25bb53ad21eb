"""Google OAuth and Calendar REST helpers.

Everything that talks to Google goes through :class:`GoogleApiClient`:

- token endpoint: authorization-code exchange and refresh-token grant
- userinfo endpoints: the signed-in user's email and picture
- Calendar v3: calendar list and per-calendar events

Only read-only Calendar scopes are ever requested.  Secret material
(client secret, refresh and access tokens) is never logged.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from calwidget.models import CalendarListEntry

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URLS = (
    "https://www.googleapis.com/oauth2/v2/userinfo",
    "https://openidconnect.googleapis.com/v1/userinfo",
)
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_LIST_URL = f"{GOOGLE_CALENDAR_API_BASE_URL}/users/me/calendarList"

OAUTH_SCOPES = (
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
)

DEFAULT_EXPIRES_IN_SECONDS = 3600

NO_ACCESS_TOKEN = "no access_token"


class GoogleApiError(RuntimeError):
    """Base error raised by the Google API helpers."""


class TokenExchangeError(GoogleApiError):
    """Raised when the authorization code -> token exchange fails."""


class TokenRefreshError(GoogleApiError):
    """Raised when a refresh-token grant fails."""


class CalendarRequestError(GoogleApiError):
    """Raised when a Calendar API request returns a non-2xx status."""

    def __init__(self, *, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(format_calendar_api_error(status_code, message))


class TokenResponse(BaseModel):
    """The parts of a token-endpoint response the widget uses."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int = DEFAULT_EXPIRES_IN_SECONDS
    scope: str | None = None

    def __repr__(self) -> str:
        return (
            f"TokenResponse(access_token=<REDACTED>, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"expires_in={self.expires_in!r}, scope={self.scope!r})"
        )

    __str__ = __repr__


class UserProfile(BaseModel):
    email: str | None = None
    picture: str | None = None


def format_calendar_api_error(status_code: int, message: str | None = None) -> str:
    """User-facing message for a failed Calendar API call."""
    if status_code == 403:
        return (
            'Access denied (403). Enable "Google Calendar API" in Google Cloud Console: '
            'APIs & Services -> Library -> search "Google Calendar API" -> Enable. '
            + (f"Details: {message}" if message else "")
        )
    if status_code == 401:
        return "Not authorized. Sign out and sign in again."
    if message:
        return f"Calendar API error {status_code}: {message}"
    return f"Calendar API error: {status_code}"


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def _embedded_error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error_payload = payload.get("error")
    if isinstance(error_payload, dict):
        message = error_payload.get("message")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
    return None


def _parse_token_payload(
    response: httpx.Response, error_cls: type[GoogleApiError]
) -> TokenResponse:
    """Validate a token-endpoint response.

    Google reports grant failures as a JSON body with an ``error`` string, so
    the body is inspected regardless of the HTTP status.
    """
    try:
        payload = response.json()
    except ValueError as exc:
        raise error_cls(
            f"Token endpoint returned invalid JSON (HTTP {response.status_code})"
        ) from exc

    if not isinstance(payload, dict):
        raise error_cls("Token endpoint returned an unexpected JSON payload shape")

    error = payload.get("error")
    if isinstance(error, str) and error:
        raise error_cls(error)

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise error_cls(NO_ACCESS_TOKEN)

    refresh_token = payload.get("refresh_token")
    scope = payload.get("scope")
    return TokenResponse(
        access_token=access_token.strip(),
        refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
        expires_in=_coerce_expires_in_seconds(payload.get("expires_in")),
        scope=scope if isinstance(scope, str) else None,
    )


class GoogleApiClient:
    """Thin async client over the Google endpoints the widget uses."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def _post_token(
        self, data: dict[str, str], error_cls: type[GoogleApiError]
    ) -> TokenResponse:
        try:
            response = await self._http_client.post(
                GOOGLE_TOKEN_URL,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise error_cls(f"Token request failed: {exc}") from exc
        return _parse_token_payload(response, error_cls)

    async def exchange_code(
        self,
        *,
        code: str,
        code_verifier: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> TokenResponse:
        """Trade an authorization code (plus PKCE verifier) for tokens.

        Raises
        ------
        TokenExchangeError
            On transport failure, a provider ``error`` or a missing access token.
        """
        return await self._post_token(
            {
                "code": code,
                "code_verifier": code_verifier,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            TokenExchangeError,
        )

    async def refresh_access_token(
        self,
        *,
        refresh_token: str,
        client_id: str,
        client_secret: str,
    ) -> TokenResponse:
        """Run a refresh-token grant.

        Raises
        ------
        TokenRefreshError
            On transport failure, a provider ``error`` or a missing access token.
        """
        return await self._post_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            TokenRefreshError,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def fetch_user_profile(self, access_token: str) -> UserProfile:
        """Email and picture from the first userinfo endpoint that knows the email."""
        headers = {"Authorization": f"Bearer {access_token}"}
        for url in GOOGLE_USERINFO_URLS:
            try:
                response = await self._http_client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                logger.debug("Userinfo request to %s failed: %s", url, exc)
                continue
            if not response.is_success:
                logger.debug("Userinfo endpoint %s returned HTTP %d", url, response.status_code)
                continue
            try:
                payload = response.json()
            except ValueError:
                continue
            if not isinstance(payload, dict):
                continue
            email = payload.get("email")
            if isinstance(email, str) and email:
                picture = payload.get("picture")
                return UserProfile(
                    email=email,
                    picture=picture if isinstance(picture, str) and picture else None,
                )
        return UserProfile()

    async def email_from_calendar_list(self, access_token: str) -> str | None:
        """Guess the account email from calendar ids when userinfo gave none.

        Prefers the primary calendar's id, then any id that looks like an email.
        """
        try:
            calendars = await self.list_calendars(access_token)
        except GoogleApiError as exc:
            logger.debug("Calendar list lookup for account email failed: %s", exc)
            return None
        primary = next((cal for cal in calendars if cal.primary), None)
        if primary is not None and "@" in primary.id:
            return primary.id
        first_email_like = next((cal for cal in calendars if "@" in cal.id), None)
        return first_email_like.id if first_email_like is not None else None

    # ------------------------------------------------------------------
    # Calendar v3
    # ------------------------------------------------------------------

    async def _get_calendar_json(
        self,
        url: str,
        access_token: str,
        *,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._http_client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise GoogleApiError(f"Google Calendar request failed: {exc}") from exc

        if not response.is_success:
            raise CalendarRequestError(
                status_code=response.status_code,
                message=_embedded_error_message(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise GoogleApiError("Google Calendar API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise GoogleApiError("Google Calendar API returned an unexpected JSON payload shape")
        return payload

    async def list_calendars(self, access_token: str) -> list[CalendarListEntry]:
        """The account's calendar list.

        Raises
        ------
        CalendarRequestError
            On a non-2xx response.
        GoogleApiError
            On transport failure or an unparseable body.
        """
        payload = await self._get_calendar_json(GOOGLE_CALENDAR_LIST_URL, access_token)
        items = payload.get("items")
        calendars: list[CalendarListEntry] = []
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict):
                continue
            calendar_id = item.get("id")
            if not isinstance(calendar_id, str) or not calendar_id:
                continue
            summary = item.get("summary")
            background = item.get("backgroundColor")
            calendars.append(
                CalendarListEntry(
                    id=calendar_id,
                    summary=summary if isinstance(summary, str) and summary else calendar_id,
                    primary=item.get("primary") is True,
                    background_color=background if isinstance(background, str) else None,
                )
            )
        return calendars

    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        *,
        time_min: str,
        time_max: str,
    ) -> list[dict[str, Any]]:
        """Raw event items of one calendar in ``[time_min, time_max]``, recurring expanded.

        Items without an ``id`` are dropped.

        Raises
        ------
        CalendarRequestError
            On a non-2xx response.
        GoogleApiError
            On transport failure or an unparseable body.
        """
        url = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}/events"
        payload = await self._get_calendar_json(
            url,
            access_token,
            params={
                "timeMin": time_min,
                "timeMax": time_max,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        items = payload.get("items")
        return [
            item
            for item in (items if isinstance(items, list) else [])
            if isinstance(item, dict) and item.get("id")
        ]
