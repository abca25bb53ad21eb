"""Widget settings: the configuration provider consumed by the core.

Settings are stored in ``settings.json`` with the camelCase keys the widget
has always used (``googleClientId``, ``selectedCalendarIds``, ...).  Reads
merge stored values over defaults; a stored value that fails validation is
dropped with a warning rather than making the whole file unusable.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from calwidget.storage import JsonFileStore

logger = logging.getLogger(__name__)

MIN_REFRESH_INTERVAL_SECONDS = 30
DEFAULT_REFRESH_INTERVAL_SECONDS = 60


class WidgetSettings(BaseModel):
    """Validated widget settings."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    google_client_id: str = Field(default="", alias="googleClientId")
    google_client_secret: str = Field(default="", alias="googleClientSecret")
    selected_calendar_ids: list[str] = Field(default_factory=list, alias="selectedCalendarIds")
    refresh_interval_seconds: int = Field(
        default=DEFAULT_REFRESH_INTERVAL_SECONDS, alias="refreshIntervalSeconds"
    )
    show_weekends: bool = Field(default=False, alias="showWeekends")

    @field_validator("google_client_id", "google_client_secret", mode="before")
    @classmethod
    def _strip_credentials(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("selected_calendar_ids", mode="before")
    @classmethod
    def _keep_string_ids(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [item for item in value if isinstance(item, str) and item]

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def effective_refresh_interval(self) -> int:
        """Polling interval in seconds, never below the 30 second floor."""
        return max(MIN_REFRESH_INTERVAL_SECONDS, self.refresh_interval_seconds)

    def __repr__(self) -> str:
        return (
            f"WidgetSettings("
            f"google_client_id={self.google_client_id!r}, "
            f"google_client_secret={'<REDACTED>' if self.google_client_secret else ''!r}, "
            f"selected_calendar_ids={self.selected_calendar_ids!r}, "
            f"refresh_interval_seconds={self.refresh_interval_seconds!r}, "
            f"show_weekends={self.show_weekends!r})"
        )

    __str__ = __repr__


_KNOWN_KEYS = frozenset(field.alias for field in WidgetSettings.model_fields.values())


class SettingsStore:
    """Read/write access to :class:`WidgetSettings` on top of a JSON store."""

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store

    def get(self) -> WidgetSettings:
        stored = {key: value for key, value in self._store.snapshot().items() if key in _KNOWN_KEYS}
        try:
            return WidgetSettings.model_validate(stored)
        except ValidationError as exc:
            bad_keys = {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
            logger.warning("Ignoring invalid stored settings: %s", ", ".join(sorted(bad_keys)))
            cleaned = {key: value for key, value in stored.items() if key not in bad_keys}
            return WidgetSettings.model_validate(cleaned)

    def update(self, **changes: Any) -> WidgetSettings:
        """Validate and persist *changes* (snake_case names); ``None`` values are skipped.

        Raises
        ------
        ValueError
            For an unknown setting name.
        pydantic.ValidationError
            When a value does not validate; nothing is written in that case.
        """
        fields = WidgetSettings.model_fields
        unknown = sorted(name for name in changes if name not in fields)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")

        to_set = {name: value for name, value in changes.items() if value is not None}
        if not to_set:
            return self.get()

        candidate = self.get().model_dump(by_alias=True)
        candidate.update({fields[name].alias: value for name, value in to_set.items()})
        validated = WidgetSettings.model_validate(candidate)

        dumped = validated.model_dump(by_alias=True)
        self._store.update({fields[name].alias: dumped[fields[name].alias] for name in to_set})
        return validated
