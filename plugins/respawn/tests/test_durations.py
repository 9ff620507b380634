"""
tests/test_durations.py

Unit tests for the DurationStore.
"""

import json
import pytest

from plugins.respawn.durations import DurationStore
from plugins.respawn.errors import PersistenceError


class TestDurationStore:
    """Tests for remembered cooldowns."""

    def test_in_memory_store(self):
        store = DurationStore()
        assert store.get("Dragon") is None

        store.set("Dragon", 3)

        assert store.get("Dragon") == 3.0
        assert "Dragon" in store
        assert len(store) == 1
        store.save()  # No path, nothing to do

    def test_set_does_not_write(self, tmp_path):
        path = tmp_path / "durations.json"
        store = DurationStore(path)
        store.set("Dragon", 3)
        assert not path.exists()

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "durations.json"
        store = DurationStore(path)
        store.set("Dragon", 3)
        store.set("Golem", 0.5)
        store.save()

        reloaded = DurationStore(path)
        assert reloaded.as_dict() == {"Dragon": 3.0, "Golem": 0.5}

    def test_save_snapshot(self, tmp_path):
        """save() writes the given snapshot rather than the live mapping."""
        path = tmp_path / "durations.json"
        store = DurationStore(path)
        store.set("Dragon", 3)
        snapshot = store.as_dict()
        store.set("Golem", 1)

        store.save(snapshot)

        assert json.loads(path.read_text()) == {"Dragon": 3.0}

    def test_as_dict_is_a_copy(self):
        store = DurationStore()
        store.set("Dragon", 3)
        store.as_dict()["Dragon"] = 99
        assert store.get("Dragon") == 3.0

    def test_invalid_values_skipped_on_load(self, tmp_path):
        path = tmp_path / "durations.json"
        path.write_text(json.dumps({
            "Dragon": 2,
            "Zero": 0,
            "Negative": -1,
            "Text": "abc",
            "Missing": None,
        }))

        assert DurationStore(path).as_dict() == {"Dragon": 2.0}

    def test_corrupt_file_loads_empty(self, tmp_path):
        path = tmp_path / "durations.json"
        path.write_text("{broken")
        assert len(DurationStore(path)) == 0

    def test_save_failure_raises(self, tmp_path):
        blocker = tmp_path / "file.txt"
        blocker.write_text("")
        store = DurationStore(blocker / "durations.json")
        store.set("Dragon", 2)

        with pytest.raises(PersistenceError):
            store.save()
