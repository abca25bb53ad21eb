"""Tests for calwidget.config.

Covers:
- defaults when calwidget.toml is absent
- [widget] parsing: data_dir, logging, storage, http, signin
- ${VAR} expansion and unresolved variables
- validation errors
- CALWIDGET_HOME override
"""

from __future__ import annotations

from pathlib import Path

import pytest

from calwidget.config import (
    CONFIG_FILENAME,
    AppConfig,
    ConfigError,
    default_config_dir,
    load_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit


def _write(config_dir: Path, text: str) -> None:
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / CONFIG_FILENAME).write_text(text)


class TestLoadConfig:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        assert config == AppConfig(data_dir=tmp_path)
        assert config.logging.level == "INFO"
        assert config.storage.secure is True
        assert config.settings_path == tmp_path / "settings.json"
        assert config.tokens_path == tmp_path / "auth-tokens.json"
        assert config.key_path == tmp_path / "token.key"

    def test_full_file(self, tmp_path: Path) -> None:
        _write(
            tmp_path,
            """
[widget]
data_dir = "data"

[widget.logging]
level = "debug"
format = "JSON"
log_root = "logs"

[widget.storage]
secure = false
key_file = "/keys/widget.key"

[widget.http]
timeout_s = 12.5

[widget.signin]
timeout_s = 60
""",
        )
        config = load_config(tmp_path)
        assert config.data_dir == tmp_path / "data"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.logging.log_root == tmp_path / "data" / "logs"
        assert config.storage.secure is False
        assert config.key_path == Path("/keys/widget.key")
        assert config.http_timeout_s == 12.5
        assert config.signin_timeout_s == 60.0

    def test_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WIDGET_DATA", str(tmp_path / "elsewhere"))
        _write(tmp_path, '[widget]\ndata_dir = "${WIDGET_DATA}"\n')
        assert load_config(tmp_path).data_dir == tmp_path / "elsewhere"

    def test_unresolved_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NOPE_NOT_SET", raising=False)
        _write(tmp_path, '[widget]\ndata_dir = "${NOPE_NOT_SET}"\n')
        with pytest.raises(ConfigError, match="NOPE_NOT_SET"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path: Path) -> None:
        _write(tmp_path, "[widget\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(tmp_path)

    def test_invalid_log_format(self, tmp_path: Path) -> None:
        _write(tmp_path, '[widget.logging]\nformat = "xml"\n')
        with pytest.raises(ConfigError, match="format"):
            load_config(tmp_path)

    def test_secure_must_be_boolean(self, tmp_path: Path) -> None:
        _write(tmp_path, '[widget.storage]\nsecure = "yes"\n')
        with pytest.raises(ConfigError, match="boolean"):
            load_config(tmp_path)

    @pytest.mark.parametrize("value", ["0", "-1", '"fast"'])
    def test_timeout_must_be_positive_number(self, tmp_path: Path, value: str) -> None:
        _write(tmp_path, f"[widget.http]\ntimeout_s = {value}\n")
        with pytest.raises(ConfigError, match="timeout_s"):
            load_config(tmp_path)


class TestResolveEnvVars:
    def test_nested_structures(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CW_A", "alpha")
        resolved = resolve_env_vars({"x": ["${CW_A}", 1], "y": {"z": "pre-${CW_A}"}})
        assert resolved == {"x": ["alpha", 1], "y": {"z": "pre-alpha"}}


class TestDefaultConfigDir:
    def test_home_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CALWIDGET_HOME", str(tmp_path))
        assert default_config_dir() == tmp_path

    def test_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CALWIDGET_HOME", raising=False)
        assert default_config_dir() == Path.home() / ".config" / "calwidget"
