"""Shared fixtures for the calwidget test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from cryptography.fernet import Fernet

from calwidget.crypto import TokenCipher
from calwidget.google_api import GoogleApiClient
from calwidget.settings import SettingsStore
from calwidget.storage import JsonFileStore
from calwidget.vault import Account, CredentialVault

CLIENT_ID = "client-id-123.apps.googleusercontent.com"
CLIENT_SECRET = "super-secret-xyz"

# Fixed wall clock for token expiry arithmetic (epoch seconds).
NOW_S = 1_700_000_000.0
NOW_MS = int(NOW_S * 1000)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture()
def settings_store(tmp_path: Path) -> SettingsStore:
    store = SettingsStore(JsonFileStore(tmp_path / "settings.json"))
    store.update(google_client_id=CLIENT_ID, google_client_secret=CLIENT_SECRET)
    return store


@pytest.fixture()
def empty_settings_store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(JsonFileStore(tmp_path / "settings.json"))


@pytest.fixture()
def cipher() -> TokenCipher:
    return TokenCipher(secure_storage_available=True, key=Fernet.generate_key())


@pytest.fixture()
def token_store(tmp_path: Path) -> JsonFileStore:
    return JsonFileStore(tmp_path / "auth-tokens.json", file_mode=0o600)


@pytest.fixture()
def vault(token_store: JsonFileStore, cipher: TokenCipher) -> CredentialVault:
    return CredentialVault(token_store, cipher)


@pytest.fixture()
def make_account(vault: CredentialVault) -> Callable[..., Account]:
    """Build an :class:`Account` whose refresh token is encrypted with the vault cipher."""

    def _make(
        email: str,
        *,
        refresh_token: str | None = None,
        access_token: str | None = "live-access",
        expiry: int | None = NOW_MS + 3_600_000,
        picture: str | None = None,
    ) -> Account:
        return Account(
            email=email,
            picture=picture,
            refresh_token=vault.encrypt(refresh_token or f"refresh-{email}"),
            access_token=access_token,
            expiry=expiry,
        )

    return _make


def make_api(handler: Handler) -> GoogleApiClient:
    """GoogleApiClient whose traffic is served by *handler*."""
    return GoogleApiClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
