"""Tests for calwidget.settings.

Covers:
- defaults and camelCase persistence
- credential stripping and the client-credentials check
- refresh interval floor
- invalid stored values are dropped, unknown names rejected
- no secret material in repr()
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from calwidget.settings import (
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    MIN_REFRESH_INTERVAL_SECONDS,
    SettingsStore,
    WidgetSettings,
)
from calwidget.storage import JsonFileStore

pytestmark = pytest.mark.unit


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(JsonFileStore(tmp_path / "settings.json"))


class TestWidgetSettings:
    def test_defaults(self) -> None:
        settings = WidgetSettings()
        assert settings.google_client_id == ""
        assert settings.selected_calendar_ids == []
        assert settings.refresh_interval_seconds == DEFAULT_REFRESH_INTERVAL_SECONDS
        assert settings.has_client_credentials is False

    def test_credentials_are_stripped(self) -> None:
        settings = WidgetSettings(googleClientId="  id  ", googleClientSecret=" secret ")
        assert settings.google_client_id == "id"
        assert settings.google_client_secret == "secret"
        assert settings.has_client_credentials is True

    def test_whitespace_only_secret_is_not_a_credential(self) -> None:
        settings = WidgetSettings(googleClientId="id", googleClientSecret="   ")
        assert settings.has_client_credentials is False

    def test_non_string_calendar_ids_dropped(self) -> None:
        settings = WidgetSettings(selectedCalendarIds=["a", 3, None, "", "b"])
        assert settings.selected_calendar_ids == ["a", "b"]

    @pytest.mark.parametrize(
        ("configured", "effective"),
        [(5, MIN_REFRESH_INTERVAL_SECONDS), (30, 30), (120, 120)],
    )
    def test_effective_refresh_interval_floor(self, configured: int, effective: int) -> None:
        assert WidgetSettings(refreshIntervalSeconds=configured).effective_refresh_interval == (
            effective
        )

    def test_repr_does_not_leak_secret(self) -> None:
        settings = WidgetSettings(googleClientId="id", googleClientSecret="super-secret-xyz")
        assert "super-secret-xyz" not in repr(settings)
        assert "super-secret-xyz" not in str(settings)
        assert "REDACTED" in repr(settings)


class TestSettingsStore:
    def test_update_persists_camel_case_keys(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.update(google_client_id="id", selected_calendar_ids=["a@x.com"])

        on_disk = json.loads((tmp_path / "settings.json").read_text())
        assert on_disk == {"googleClientId": "id", "selectedCalendarIds": ["a@x.com"]}
        assert store.get().selected_calendar_ids == ["a@x.com"]

    def test_none_values_are_skipped(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.update(refresh_interval_seconds=90)
        store.update(refresh_interval_seconds=None, show_weekends=True)

        settings = store.get()
        assert settings.refresh_interval_seconds == 90
        assert settings.show_weekends is True

    def test_unknown_name_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unknown setting"):
            _store(tmp_path).update(always_on_top=True)

    def test_invalid_value_not_written(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        with pytest.raises(ValidationError):
            store.update(refresh_interval_seconds="soon")
        assert not (tmp_path / "settings.json").exists()

    def test_invalid_stored_value_falls_back_to_default(self, tmp_path: Path) -> None:
        (tmp_path / "settings.json").write_text(
            json.dumps({"refreshIntervalSeconds": "soon", "googleClientId": "id"})
        )
        settings = _store(tmp_path).get()
        assert settings.refresh_interval_seconds == DEFAULT_REFRESH_INTERVAL_SECONDS
        assert settings.google_client_id == "id"

    def test_foreign_keys_are_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "settings.json").write_text(json.dumps({"alwaysOnTop": True}))
        assert _store(tmp_path).get() == WidgetSettings()
