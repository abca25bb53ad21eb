"""Process-level configuration loading and validation.

Reads ``calwidget.toml`` from the config directory and returns a validated
:class:`AppConfig`.  The file is optional: a fresh install runs on defaults.
User-editable widget settings (client credentials, selected calendars,
refresh interval) are *not* here; they live in ``settings.json`` and are
handled by :mod:`calwidget.settings`.

Example::

    [widget]
    data_dir = "${HOME}/.local/share/calwidget"

    [widget.logging]
    level = "DEBUG"
    format = "json"
    log_root = "logs"

    [widget.storage]
    secure = true
    key_file = "token.key"

    [widget.http]
    timeout_s = 20
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "calwidget.toml"
SETTINGS_FILENAME = "settings.json"
TOKENS_FILENAME = "auth-tokens.json"
ENV_HOME = "CALWIDGET_HOME"

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when the widget configuration file is malformed or invalid."""


def default_config_dir() -> Path:
    """``$CALWIDGET_HOME`` when set, else ``~/.config/calwidget``."""
    override = os.environ.get(ENV_HOME, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "calwidget"


@dataclass
class LoggingConfig:
    """Logging configuration from [widget.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: Path | None = None


@dataclass
class StorageConfig:
    """Token-at-rest configuration from [widget.storage] section.

    ``secure`` selects Fernet encryption with the key in ``key_file``; when
    false, refresh tokens are only base64-encoded.
    """

    secure: bool = True
    key_file: Path | None = None


@dataclass
class AppConfig:
    """Validated widget process configuration."""

    data_dir: Path
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    http_timeout_s: float = 30.0
    signin_timeout_s: float = 300.0

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    @property
    def tokens_path(self) -> Path:
        return self.data_dir / TOKENS_FILENAME

    @property
    def key_path(self) -> Path:
        return self.storage.key_file or (self.data_dir / "token.key")


def resolve_env_vars(value: Any) -> Any:
    """Recursively replace ``${VAR_NAME}`` references in string values.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _resolve_path(raw: Any, *, base: Path, name: str) -> Path:
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"{name} must be a non-empty string")
    path = Path(raw.strip()).expanduser()
    return path if path.is_absolute() else base / path


def _positive_float(section: dict, key: str, default: float, name: str) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_config(config_dir: Path | None = None) -> AppConfig:
    """Load ``calwidget.toml`` from *config_dir* (defaults to :func:`default_config_dir`).

    Relative paths in the file are resolved against the config directory.

    Raises
    ------
    ConfigError
        If the file contains invalid TOML or invalid values.
    """
    config_dir = Path(config_dir) if config_dir is not None else default_config_dir()
    toml_path = config_dir / CONFIG_FILENAME

    if not toml_path.exists():
        return AppConfig(data_dir=config_dir)

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    widget_section = data.get("widget", {})
    if not isinstance(widget_section, dict):
        raise ConfigError("[widget] must be a table")

    data_dir = config_dir
    if "data_dir" in widget_section:
        data_dir = _resolve_path(
            widget_section["data_dir"], base=config_dir, name="widget.data_dir"
        )

    # --- [widget.logging] sub-section ---
    logging_section = widget_section.get("logging", {})
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid widget.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    log_root = None
    if logging_section.get("log_root") is not None:
        log_root = _resolve_path(
            logging_section["log_root"], base=data_dir, name="widget.logging.log_root"
        )

    # --- [widget.storage] sub-section ---
    storage_section = widget_section.get("storage", {})
    secure = storage_section.get("secure", True)
    if not isinstance(secure, bool):
        raise ConfigError("widget.storage.secure must be a boolean")
    key_file = None
    if storage_section.get("key_file") is not None:
        key_file = _resolve_path(
            storage_section["key_file"], base=data_dir, name="widget.storage.key_file"
        )

    # --- [widget.http] / [widget.signin] sub-sections ---
    http_timeout_s = _positive_float(
        widget_section.get("http", {}), "timeout_s", 30.0, "widget.http.timeout_s"
    )
    signin_timeout_s = _positive_float(
        widget_section.get("signin", {}), "timeout_s", 300.0, "widget.signin.timeout_s"
    )

    return AppConfig(
        data_dir=data_dir,
        logging=LoggingConfig(level=log_level, format=log_format, log_root=log_root),
        storage=StorageConfig(secure=secure, key_file=key_file),
        http_timeout_s=http_timeout_s,
        signin_timeout_s=signin_timeout_s,
    )
