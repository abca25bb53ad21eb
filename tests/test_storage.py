"""Tests for calwidget.storage.JsonFileStore.

Covers:
- write-through persistence across instances
- update/delete semantics
- unreadable or non-object documents are treated as empty
- optional file mode on written files
"""

from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path

import pytest

from calwidget.storage import JsonFileStore

pytestmark = pytest.mark.unit


class TestJsonFileStore:
    def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "missing.json")
        assert store.snapshot() == {}
        assert store.get("anything") is None
        assert store.get("anything", 5) == 5

    def test_set_is_written_through(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "store.json"
        JsonFileStore(path).set("key", {"a": 1})

        assert json.loads(path.read_text()) == {"key": {"a": 1}}
        assert JsonFileStore(path).get("key") == {"a": 1}

    def test_update_merges_keys(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.set("a", 1)
        store.update({"b": 2, "a": 3})
        assert JsonFileStore(store.path).snapshot() == {"a": 3, "b": 2}

    def test_empty_update_does_not_create_file(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.update({})
        assert not store.path.exists()

    def test_delete_reports_presence(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.update({"a": 1, "b": 2})

        assert store.delete("a", "zzz") is True
        assert store.delete("zzz") is False
        assert "a" not in store
        assert JsonFileStore(store.path).snapshot() == {"b": 2}

    def test_snapshot_is_a_copy(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.set("a", 1)
        snap = store.snapshot()
        snap["a"] = 99
        assert store.get("a") == 1

    def test_corrupt_json_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("{not json")
        assert JsonFileStore(path).snapshot() == {}

    def test_non_object_document_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("[1, 2, 3]")
        assert JsonFileStore(path).snapshot() == {}

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "store.json")
        store.set("a", 1)
        store.set("b", 2)
        assert sorted(p.name for p in tmp_path.iterdir()) == ["store.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
    def test_file_mode_applied(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "secret.json", file_mode=0o600)
        store.set("a", 1)
        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600
