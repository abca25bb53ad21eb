"""Credential vault: the signed-in Google accounts and their tokens.

Accounts are kept, in sign-in order, under the ``accounts`` key of the
token store.  The first account is the primary one for single-account call
sites.  Emails are unique: signing in again with a known email replaces that
entry in place.

Older releases stored a single account as flat keys
(``google_refresh_token``, ``google_access_token``, ``google_token_expiry``,
``current_account_email``, ``current_account_picture``).  Whenever the vault
is read while empty, those keys are checked and, if the legacy refresh token
still decrypts, converted into a one-element vault.

Refresh tokens are stored only as ciphertext produced by
:class:`~calwidget.crypto.TokenCipher`.  Every mutation is written to disk
before the method returns.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from calwidget.crypto import TokenCipher
from calwidget.storage import JsonFileStore

logger = logging.getLogger(__name__)

KEY_ACCOUNTS = "accounts"

LEGACY_REFRESH_TOKEN = "google_refresh_token"
LEGACY_ACCESS_TOKEN = "google_access_token"
LEGACY_TOKEN_EXPIRY = "google_token_expiry"
LEGACY_EMAIL = "current_account_email"
LEGACY_PICTURE = "current_account_picture"
LEGACY_KEYS = (
    LEGACY_REFRESH_TOKEN,
    LEGACY_ACCESS_TOKEN,
    LEGACY_TOKEN_EXPIRY,
    LEGACY_EMAIL,
    LEGACY_PICTURE,
)

UNKNOWN_EMAIL = "unknown"


class Account(BaseModel):
    """One authenticated Google identity as persisted in the vault.

    ``refresh_token`` holds ciphertext, never the raw token.  ``expiry`` is
    the access-token expiry as epoch milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: str
    picture: str | None = None
    refresh_token: str = Field(alias="refreshToken")
    access_token: str | None = Field(default=None, alias="accessToken")
    expiry: int | None = None

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def __repr__(self) -> str:
        return (
            f"Account("
            f"email={self.email!r}, "
            f"picture={self.picture!r}, "
            f"refresh_token=<REDACTED>, "
            f"access_token={'<REDACTED>' if self.access_token else None}, "
            f"expiry={self.expiry!r})"
        )

    __str__ = __repr__


class AccountProfile(BaseModel):
    """Public view of an account: no token material."""

    email: str
    picture: str | None = None


def _coerce_account(raw: Any) -> Account | None:
    if not isinstance(raw, dict):
        return None
    if not isinstance(raw.get("email"), str) or not isinstance(raw.get("refreshToken"), str):
        return None
    picture = raw.get("picture")
    access_token = raw.get("accessToken")
    expiry = raw.get("expiry")
    if isinstance(expiry, bool) or not isinstance(expiry, int | float):
        expiry = None
    return Account(
        email=raw["email"],
        picture=picture if isinstance(picture, str) else None,
        refresh_token=raw["refreshToken"],
        access_token=access_token if isinstance(access_token, str) else None,
        expiry=int(expiry) if expiry is not None else None,
    )


class CredentialVault:
    """Account CRUD over a :class:`JsonFileStore`, with legacy migration."""

    def __init__(self, store: JsonFileStore, cipher: TokenCipher) -> None:
        self._store = store
        self._cipher = cipher

    # ------------------------------------------------------------------
    # Token encryption
    # ------------------------------------------------------------------

    def encrypt(self, token: str) -> str:
        return self._cipher.encrypt(token)

    def decrypt(self, ciphertext: str) -> str | None:
        return self._cipher.decrypt(ciphertext)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_accounts(self) -> list[Account]:
        raw = self._store.get(KEY_ACCOUNTS)
        if not isinstance(raw, list):
            return []
        accounts = []
        for entry in raw:
            account = _coerce_account(entry)
            if account is not None:
                accounts.append(account)
        return accounts

    def _migrate_legacy(self) -> None:
        legacy_refresh = self._store.get(LEGACY_REFRESH_TOKEN)
        if not isinstance(legacy_refresh, str) or not legacy_refresh:
            return
        if self.decrypt(legacy_refresh) is None:
            logger.warning("Legacy refresh token could not be decrypted; skipping migration")
            return

        email = self._store.get(LEGACY_EMAIL)
        picture = self._store.get(LEGACY_PICTURE)
        access_token = self._store.get(LEGACY_ACCESS_TOKEN)
        expiry = self._store.get(LEGACY_TOKEN_EXPIRY)
        account = _coerce_account(
            {
                "email": email if isinstance(email, str) and email else UNKNOWN_EMAIL,
                "picture": picture,
                "refreshToken": legacy_refresh,
                "accessToken": access_token,
                "expiry": expiry,
            }
        )
        assert account is not None
        self._write_accounts([account])
        self._store.delete(*LEGACY_KEYS)
        logger.info("Migrated legacy single-account credentials for %s", account.email)

    def get_accounts(self) -> list[Account]:
        """Return the vault, migrating the legacy format first if the vault is empty."""
        accounts = self._read_accounts()
        if not accounts:
            self._migrate_legacy()
            accounts = self._read_accounts()
        return accounts

    def primary_account(self) -> Account | None:
        accounts = self.get_accounts()
        return accounts[0] if accounts else None

    def is_authenticated(self) -> bool:
        return bool(self.get_accounts())

    def profiles(self) -> list[AccountProfile]:
        """Email and picture of every stored account; no network access."""
        return [
            AccountProfile(email=account.email, picture=account.picture)
            for account in self.get_accounts()
        ]

    def find_refresh_token(self, email: str) -> str | None:
        """Decrypted refresh token stored for *email*, if any."""
        for account in self.get_accounts():
            if account.email == email:
                return self.decrypt(account.refresh_token)
        return None

    # ------------------------------------------------------------------
    # Mutation (write-through)
    # ------------------------------------------------------------------

    def _write_accounts(self, accounts: list[Account]) -> None:
        self._store.set(KEY_ACCOUNTS, [account.to_storage() for account in accounts])

    def save_accounts(self, accounts: list[Account]) -> None:
        """Persist *accounts* as the whole vault."""
        self._write_accounts(accounts)

    def upsert_account(self, account: Account) -> None:
        """Replace the entry with the same email, or append a new one."""
        accounts = self.get_accounts()
        for index, existing in enumerate(accounts):
            if existing.email == account.email:
                accounts[index] = account
                logger.info("Updated stored account %s", account.email)
                break
        else:
            accounts.append(account)
            logger.info("Added account %s", account.email)
        self._write_accounts(accounts)

    def remove_account(self, email: str | None = None) -> None:
        """Remove the account for *email*, or every account when *email* is None."""
        if email:
            accounts = [account for account in self.get_accounts() if account.email != email]
            self._write_accounts(accounts)
            logger.info("Signed out %s", email)
            return

        self._write_accounts([])
        self._store.delete(*LEGACY_KEYS)
        logger.info("Signed out all accounts")
