"""JSON-file key-value store with synchronous write-through.

Backs both the settings file and the auth-token file.  Every mutation is
written to disk before the call returns, so there is nothing to flush on
exit.  Writes go to a temporary sibling file that is then renamed over the
target, so a crash mid-write never leaves a truncated document behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonFileStore:
    """A flat ``dict[str, Any]`` persisted as one JSON document."""

    def __init__(self, path: Path, *, file_mode: int | None = None) -> None:
        self._path = Path(path)
        self._file_mode = file_mode
        self._data: dict[str, Any] = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable store %s: %s", self._path, exc.msg)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring store %s: top-level JSON value is not an object", self._path)
            return {}
        return payload

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, sort_keys=True)
            if self._file_mode is not None:
                os.chmod(tmp_name, self._file_mode)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def snapshot(self) -> dict[str, Any]:
        """Return a shallow copy of the whole document."""
        return dict(self._data)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._write()

    def update(self, values: Mapping[str, Any]) -> None:
        if not values:
            return
        self._data.update(values)
        self._write()

    def delete(self, *keys: str) -> bool:
        """Remove *keys*; returns True when at least one key existed."""
        present = [key for key in keys if key in self._data]
        for key in present:
            del self._data[key]
        if present:
            self._write()
        return bool(present)
