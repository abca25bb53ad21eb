"""Interactive Google sign-in: OAuth 2.0 authorization-code flow with PKCE.

The flow:
  1. Generate a random ``state`` (CSRF protection) and a PKCE code verifier;
     the challenge is the unpadded base64url SHA-256 of the verifier.
  2. Bind a loopback listener on ``127.0.0.1`` with an ephemeral port and
     serve a one-route FastAPI app on it with uvicorn.
  3. Open the system browser at Google's authorization endpoint with
     ``access_type=offline`` and ``prompt=consent`` so a refresh token is
     issued even when the user has consented before.
  4. ``GET /oauth2callback``: validate ``state`` and ``code``, exchange the
     code (plus verifier) for tokens, resolve the user's email, and upsert
     the account into the credential vault.
  5. Any terminal outcome (success, failure, the 5 minute timeout) resolves
     the attempt exactly once and shuts the listener down.

Every callback response is a tiny HTML page that closes its own tab.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import html
import logging
import secrets
import socket
import time
import webbrowser
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import uvicorn
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from calwidget.google_api import (
    GOOGLE_AUTH_URL,
    NO_ACCESS_TOKEN,
    OAUTH_SCOPES,
    GoogleApiClient,
    TokenExchangeError,
)
from calwidget.models import SignInResult
from calwidget.settings import SettingsStore
from calwidget.vault import UNKNOWN_EMAIL, Account, CredentialVault

logger = logging.getLogger(__name__)

REDIRECT_PATH = "/oauth2callback"
LOOPBACK_HOST = "127.0.0.1"
SIGNIN_TIMEOUT_SECONDS = 5 * 60
STATE_LENGTH = 32
CODE_VERIFIER_LENGTH = 64

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

ERROR_MISSING_CLIENT = "Client ID and Client Secret are required in settings."
ERROR_BIND = "Could not bind callback port"
ERROR_TIMEOUT = "Sign in cancelled or timed out"
ERROR_INVALID_CALLBACK = "Invalid state or missing code"
ERROR_NO_REFRESH_TOKEN = "No refresh token received"
ERROR_TOKEN_EXCHANGE = "Token exchange failed"
ERROR_LISTENER_STOPPED = "Sign-in listener stopped unexpectedly"


def random_string(length: int) -> str:
    """Cryptographically random alphanumeric string."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def pkce_challenge(code_verifier: str) -> str:
    """S256 code challenge: base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_authorization_url(
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(OAUTH_SCOPES),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "access_type": "offline",
        "prompt": "consent",  # Force refresh token to be returned
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def _terminal_page(message: str) -> HTMLResponse:
    return HTMLResponse(
        f"<script>window.close()</script><p>{html.escape(message)} You can close this tab.</p>"
    )


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": "Not Found"}, status_code=404)


class SignInAttempt:
    """PKCE material plus a one-shot result for a single sign-in.

    ``resolve()`` only ever takes effect once, no matter whether the
    callback, the timeout, or a listener failure gets there first.
    """

    def __init__(self, *, state: str, code_verifier: str, redirect_uri: str = "") -> None:
        self.state = state
        self.code_verifier = code_verifier
        self.code_challenge = pkce_challenge(code_verifier)
        self.redirect_uri = redirect_uri
        self._claimed = False
        self._result: asyncio.Future[SignInResult] = asyncio.get_running_loop().create_future()

    @classmethod
    def create(cls) -> SignInAttempt:
        return cls(
            state=random_string(STATE_LENGTH),
            code_verifier=random_string(CODE_VERIFIER_LENGTH),
        )

    @property
    def done(self) -> bool:
        return self._result.done()

    def claim(self) -> bool:
        """Reserve the attempt for one callback; False if already claimed or resolved."""
        if self._claimed or self.done:
            return False
        self._claimed = True
        return True

    def resolve(self, result: SignInResult) -> bool:
        if self._result.done():
            return False
        self._result.set_result(result)
        return True

    def result(self) -> SignInResult:
        return self._result.result()

    async def wait(self, timeout: float) -> SignInResult:
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except TimeoutError:
            self.resolve(SignInResult(success=False, error=ERROR_TIMEOUT))
            return self.result()


def _bind_loopback(host: str) -> socket.socket:
    """Listening socket on an ephemeral port; connections queue until uvicorn accepts."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, 0))
        sock.listen()
    except OSError:
        sock.close()
        raise
    return sock


class SignInFlow:
    """Runs the browser sign-in and merges the result into the vault."""

    def __init__(
        self,
        vault: CredentialVault,
        settings: SettingsStore,
        api: GoogleApiClient,
        *,
        open_browser: Callable[[str], Any] = webbrowser.open,
        timeout_s: float = SIGNIN_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        host: str = LOOPBACK_HOST,
    ) -> None:
        self._vault = vault
        self._settings = settings
        self._api = api
        self._open_browser = open_browser
        self._timeout_s = timeout_s
        self._clock = clock
        self._host = host

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def sign_in(self) -> SignInResult:
        """Run one interactive sign-in; never raises for expected failures."""
        settings = self._settings.get()
        if not settings.has_client_credentials:
            return SignInResult(success=False, error=ERROR_MISSING_CLIENT)

        attempt = SignInAttempt.create()
        try:
            sock = _bind_loopback(self._host)
        except OSError as exc:
            logger.warning("Could not bind OAuth callback listener: %s", exc)
            return SignInResult(success=False, error=ERROR_BIND)

        port = sock.getsockname()[1]
        if not port:
            sock.close()
            return SignInResult(success=False, error=ERROR_BIND)
        attempt.redirect_uri = f"http://{self._host}:{port}{REDIRECT_PATH}"

        server = uvicorn.Server(
            uvicorn.Config(
                self.build_app(attempt),
                log_level="warning",
                access_log=False,
                lifespan="off",
            )
        )
        serve_task = asyncio.create_task(server.serve(sockets=[sock]), name="oauth-callback")
        serve_task.add_done_callback(
            lambda _task: attempt.resolve(SignInResult(success=False, error=ERROR_LISTENER_STOPPED))
        )
        logger.info("Google sign-in started (state=%s..., port=%d)", attempt.state[:8], port)

        try:
            authorization_url = build_authorization_url(
                client_id=settings.google_client_id,
                redirect_uri=attempt.redirect_uri,
                state=attempt.state,
                code_challenge=attempt.code_challenge,
            )
            try:
                await asyncio.to_thread(self._open_browser, authorization_url)
            except Exception as exc:
                logger.warning("Could not open the browser for sign-in: %s", exc)
                attempt.resolve(SignInResult(success=False, error=str(exc)))
            result = await attempt.wait(self._timeout_s)
        finally:
            server.should_exit = True
            try:
                await serve_task
            except Exception as exc:
                logger.warning("OAuth callback listener exited with an error: %s", exc)
            sock.close()

        if result.success:
            logger.info("Google sign-in complete")
        else:
            logger.warning("Google sign-in failed: %s", result.error)
        return result

    def sign_out(self, email: str | None = None) -> None:
        """Forget one account, or all of them when *email* is None."""
        self._vault.remove_account(email)

    # ------------------------------------------------------------------
    # Callback listener
    # ------------------------------------------------------------------

    def build_app(self, attempt: SignInAttempt) -> FastAPI:
        """FastAPI app serving only the redirect path; everything else is 404."""
        router = APIRouter()

        @router.get(REDIRECT_PATH, response_class=HTMLResponse)
        async def oauth2callback(
            code: str | None = Query(default=None),
            state: str | None = Query(default=None),
            error: str | None = Query(default=None),
        ) -> HTMLResponse:
            message = await self.complete(attempt, code=code, state=state, error=error)
            return _terminal_page(message)

        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
        app.include_router(router)
        # Wrong method on the redirect path is answered like any foreign path.
        app.add_exception_handler(405, _not_found)
        return app

    async def complete(
        self,
        attempt: SignInAttempt,
        *,
        code: str | None,
        state: str | None,
        error: str | None,
    ) -> str:
        """Handle one redirect; resolves *attempt* and returns the page message."""
        if not attempt.claim():
            return "This sign-in has already finished."

        if error:
            attempt.resolve(SignInResult(success=False, error=error))
            return f"Sign in failed: {error}."

        if not code or state != attempt.state:
            logger.warning("OAuth callback had an invalid state or no code")
            attempt.resolve(SignInResult(success=False, error=ERROR_INVALID_CALLBACK))
            return "Invalid response."

        try:
            return await self._finish(attempt, code)
        except Exception as exc:
            logger.error("Google sign-in failed unexpectedly: %s", exc, exc_info=True)
            attempt.resolve(SignInResult(success=False, error=str(exc)))
            return f"Error: {exc}."

    async def _finish(self, attempt: SignInAttempt, code: str) -> str:
        settings = self._settings.get()
        try:
            token = await self._api.exchange_code(
                code=code,
                code_verifier=attempt.code_verifier,
                client_id=settings.google_client_id,
                client_secret=settings.google_client_secret,
                redirect_uri=attempt.redirect_uri,
            )
        except TokenExchangeError as exc:
            logger.warning("Google token exchange failed: %s", exc)
            reason = ERROR_TOKEN_EXCHANGE if str(exc) == NO_ACCESS_TOKEN else str(exc)
            attempt.resolve(SignInResult(success=False, error=reason))
            return f"Token error: {exc}."

        logger.info("Google granted scopes: %s", token.scope or "(not reported)")
        expiry_ms = int(self._clock() * 1000) + token.expires_in * 1000
        email, picture = await self._resolve_identity(token.access_token)

        refresh_token = token.refresh_token or self._vault.find_refresh_token(email)
        if not refresh_token:
            attempt.resolve(SignInResult(success=False, error=ERROR_NO_REFRESH_TOKEN))
            return (
                "No refresh token. Sign out that account in the app and sign in again "
                'with "consent" to get a refresh token.'
            )

        self._vault.upsert_account(
            Account(
                email=email,
                picture=picture,
                refresh_token=self._vault.encrypt(refresh_token),
                access_token=token.access_token,
                expiry=expiry_ms,
            )
        )
        attempt.resolve(SignInResult(success=True))
        return "Signed in successfully."

    async def _resolve_identity(self, access_token: str) -> tuple[str, str | None]:
        profile = await self._api.fetch_user_profile(access_token)
        if profile.email:
            return profile.email, profile.picture
        email = await self._api.email_from_calendar_list(access_token)
        return email or UNKNOWN_EMAIL, profile.picture
