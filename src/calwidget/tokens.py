"""Keeps each vault account's access token valid.

An account's cached access token is reused while its expiry is more than
60 seconds away; otherwise one refresh-token grant is attempted.  An account
whose refresh token no longer decrypts, or whose refresh fails, is left out
of the result for this call only; the aggregator's next cycle tries again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from calwidget.google_api import GoogleApiClient, TokenRefreshError
from calwidget.models import AccountToken
from calwidget.settings import SettingsStore
from calwidget.vault import CredentialVault

logger = logging.getLogger(__name__)

EXPIRY_SKEW_MS = 60_000


def _epoch_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class TokenRefresher:
    """Produces live access tokens for every stored account."""

    def __init__(
        self,
        vault: CredentialVault,
        settings: SettingsStore,
        api: GoogleApiClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._vault = vault
        self._settings = settings
        self._api = api
        self._clock = clock

    def _needs_refresh(self, access_token: str | None, expiry: int | None) -> bool:
        if not access_token or not expiry:
            return True
        return _epoch_ms(self._clock) >= expiry - EXPIRY_SKEW_MS

    async def get_valid_access_tokens(self) -> list[AccountToken]:
        settings = self._settings.get()
        if not settings.has_client_credentials:
            logger.debug("No OAuth client credentials configured; no access tokens available")
            return []

        accounts = self._vault.get_accounts()
        result: list[AccountToken] = []
        changed = False

        for index, account in enumerate(accounts):
            refresh_token = self._vault.decrypt(account.refresh_token)
            if not refresh_token:
                logger.warning("Skipping %s: stored refresh token is unreadable", account.email)
                continue

            access_token = account.access_token
            if self._needs_refresh(access_token, account.expiry):
                try:
                    token = await self._api.refresh_access_token(
                        refresh_token=refresh_token,
                        client_id=settings.google_client_id,
                        client_secret=settings.google_client_secret,
                    )
                except TokenRefreshError as exc:
                    logger.warning("Access token refresh failed for %s: %s", account.email, exc)
                    continue
                access_token = token.access_token
                accounts[index] = account.model_copy(
                    update={
                        "access_token": access_token,
                        "expiry": _epoch_ms(self._clock) + token.expires_in * 1000,
                    }
                )
                changed = True
                logger.debug("Refreshed access token for %s", account.email)

            if access_token:
                result.append(
                    AccountToken(
                        email=account.email,
                        picture=account.picture,
                        access_token=access_token,
                    )
                )

        if changed:
            self._vault.save_accounts(accounts)
        return result

    async def get_valid_access_token(self) -> str | None:
        """The primary account's access token, for single-account callers."""
        tokens = await self.get_valid_access_tokens()
        return tokens[0].access_token if tokens else None
