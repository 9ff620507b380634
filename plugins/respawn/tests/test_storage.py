"""
tests/test_storage.py

Unit tests for JSON persistence.

Tests cover:
- Atomic writes and failure reporting
- Loading timers from missing, corrupt and partially valid files
- Single-value preference files
"""

import json
import pytest
from datetime import datetime, timezone

from plugins.respawn.errors import PersistenceError
from plugins.respawn.storage import (
    PreferenceStore,
    TimerStore,
    atomic_write_json,
    read_json,
)
from plugins.respawn.timer import TimerEntry


SPAWN = datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc)


def make_entry(name="Dragon", **kwargs):
    defaults = dict(name=name, spawn_at=SPAWN, cooldown_hours=2.0, channel="123")
    defaults.update(kwargs)
    return TimerEntry(**defaults)


# =============================================================================
# Atomic Write Tests
# =============================================================================

class TestAtomicWrite:
    """Tests for atomic_write_json and read_json."""

    def test_writes_json(self, tmp_path):
        path = tmp_path / "state.json"
        atomic_write_json(path, {"a": 1})
        assert json.loads(path.read_text()) == {"a": 1}

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.json"
        atomic_write_json(path, [])
        assert path.exists()

    def test_no_temp_files_left_behind(self, tmp_path):
        atomic_write_json(tmp_path / "state.json", {"a": 1})
        atomic_write_json(tmp_path / "state.json", {"a": 2})
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_unserialisable_data_keeps_old_file(self, tmp_path):
        """A failed write leaves the previous contents intact."""
        path = tmp_path / "state.json"
        atomic_write_json(path, {"a": 1})

        with pytest.raises(PersistenceError):
            atomic_write_json(path, {"a": object()})

        assert json.loads(path.read_text()) == {"a": 1}
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_unwritable_location_raises(self, tmp_path):
        blocker = tmp_path / "file.txt"
        blocker.write_text("not a directory")

        with pytest.raises(PersistenceError):
            atomic_write_json(blocker / "state.json", {})

    def test_read_missing_returns_default(self, tmp_path):
        assert read_json(tmp_path / "missing.json", default={"x": 1}) == {"x": 1}

    def test_read_corrupt_returns_default(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert read_json(path, default=[]) == []


# =============================================================================
# TimerStore Tests
# =============================================================================

class TestTimerStore:
    """Tests for the active timers file."""

    def test_save_and_load(self, tmp_path):
        store = TimerStore(tmp_path / "active_timers.json")
        entries = [
            make_entry("Dragon", last_actor="alice", guild="9"),
            make_entry("Golem", cooldown_hours=4.5, channel="456"),
        ]

        store.save(entries)
        loaded = store.load()

        assert set(loaded) == {"Dragon", "Golem"}
        assert loaded["Dragon"] == entries[0]
        assert loaded["Golem"] == entries[1]

    def test_file_is_keyed_by_name(self, tmp_path):
        path = tmp_path / "active_timers.json"
        TimerStore(path).save([make_entry()])

        raw = json.loads(path.read_text())
        assert list(raw) == ["Dragon"]
        assert raw["Dragon"]["channelRef"] == "123"

    def test_save_empty_clears_file(self, tmp_path):
        store = TimerStore(tmp_path / "active_timers.json")
        store.save([make_entry()])
        store.save([])
        assert store.load() == {}

    def test_missing_file_loads_empty(self, tmp_path):
        assert TimerStore(tmp_path / "nope.json").load() == {}

    def test_corrupt_file_loads_empty(self, tmp_path):
        path = tmp_path / "active_timers.json"
        path.write_text("garbage")
        assert TimerStore(path).load() == {}

    def test_non_object_file_loads_empty(self, tmp_path):
        path = tmp_path / "active_timers.json"
        path.write_text("[1, 2, 3]")
        assert TimerStore(path).load() == {}

    def test_malformed_records_skipped(self, tmp_path):
        """One bad record doesn't prevent the others from loading."""
        path = tmp_path / "active_timers.json"
        path.write_text(json.dumps({
            "Dragon": make_entry().to_dict(),
            "NoChannel": {"spawnAt": 1, "cooldownHours": 2, "channelRef": None},
            "NotARecord": "oops",
        }))

        loaded = TimerStore(path).load()

        assert list(loaded) == ["Dragon"]

    def test_save_failure_raises(self, tmp_path):
        blocker = tmp_path / "file.txt"
        blocker.write_text("")
        store = TimerStore(blocker / "active_timers.json")

        with pytest.raises(PersistenceError):
            store.save([make_entry()])


# =============================================================================
# PreferenceStore Tests
# =============================================================================

class TestPreferenceStore:
    """Tests for single-value settings."""

    def test_default_when_missing(self, tmp_path):
        pref = PreferenceStore(tmp_path / "timezone.json")
        assert pref.get() is None
        assert pref.get("UTC") == "UTC"

    def test_set_persists(self, tmp_path):
        path = tmp_path / "default_channel.json"
        assert PreferenceStore(path).set("789") is True

        assert json.loads(path.read_text()) == {"value": "789"}
        assert PreferenceStore(path).get() == "789"

    def test_clear(self, tmp_path):
        path = tmp_path / "default_channel.json"
        pref = PreferenceStore(path)
        pref.set("789")
        pref.clear()

        assert PreferenceStore(path).get("fallback") == "fallback"

    def test_set_failure_returns_false(self, tmp_path):
        """A write failure keeps the value in memory and reports False."""
        blocker = tmp_path / "file.txt"
        blocker.write_text("")
        pref = PreferenceStore(blocker / "timezone.json")

        assert pref.set("Asia/Shanghai") is False
        assert pref.get() == "Asia/Shanghai"

    def test_corrupt_file_ignored(self, tmp_path):
        path = tmp_path / "timezone.json"
        path.write_text('"just a string"')
        assert PreferenceStore(path).get("UTC") == "UTC"
