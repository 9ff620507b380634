"""
plugins/respawn/storage.py

JSON file persistence for respawn timers.

Provides:
- Atomic JSON write (temp file + os.replace) and tolerant JSON read
- TimerStore for the set of active timers
- PreferenceStore for single-value settings (default channel, timezone)

A missing or corrupt file always reads as "no prior state". Writes raise
PersistenceError so callers can decide to log and carry on.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from .errors import PersistenceError
from .timer import TimerEntry


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def atomic_write_json(path: PathLike, data: Any) -> None:
    """
    Write JSON to path so readers never observe a half-written file.

    The data is written to a temp file in the same directory, fsynced,
    then moved over the target with os.replace.

    Args:
        path: Destination file.
        data: JSON-serialisable value.

    Raises:
        PersistenceError: On any OS or serialisation failure.
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_name = tmp.name
            json.dump(data, tmp, ensure_ascii=False, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as e:
        if tmp_name and os.path.exists(tmp_name):
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning(f"Could not remove temp file {tmp_name}")
        raise PersistenceError(f"Failed to write {path}: {e}") from e


def read_json(path: PathLike, default: Any = None) -> Any:
    """
    Read JSON from path.

    Args:
        path: File to read.
        default: Returned when the file is missing or unreadable.

    Returns:
        Parsed JSON, or default.
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"{path} not found, using default")
        return default

    try:
        with open(path, "r", encoding="utf-8") as fp:
            return json.load(fp)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable state file {path}: {e}")
        return default


# =============================================================================
# Timer Store
# =============================================================================

class TimerStore:
    """
    Persists active timers as a JSON object keyed by boss name.

    File format:
        {
            "Dragon": {
                "spawnAt": 1764619200000,
                "cooldownHours": 2.0,
                "channelRef": "123",
                "guildRef": "456",
                "lastActor": "alice"
            }
        }

    Args:
        path: Location of the timers file.
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self.logger = logging.getLogger(f"{__name__}.TimerStore")

    def save(self, entries: Iterable[TimerEntry]) -> None:
        """
        Overwrite the file with the given entries.

        Raises:
            PersistenceError: If the write failed.
        """
        data = {entry.name: entry.to_dict() for entry in entries}
        atomic_write_json(self.path, data)
        self.logger.debug(f"Saved {len(data)} timers to {self.path}")

    def load(self) -> Dict[str, TimerEntry]:
        """
        Load all stored timers.

        Malformed records are skipped; a missing or corrupt file yields
        an empty mapping.

        Returns:
            Mapping of boss name to TimerEntry.
        """
        raw = read_json(self.path, default={})
        if not isinstance(raw, dict):
            self.logger.warning(f"{self.path} does not hold a JSON object, ignoring it")
            return {}

        entries = {}
        for name, record in raw.items():
            try:
                entries[name] = TimerEntry.from_dict(name, record)
            except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
                self.logger.warning(f"Skipping malformed timer '{name}': {e}")

        self.logger.info(f"Loaded {len(entries)} timers from {self.path}")
        return entries


# =============================================================================
# Preference Store
# =============================================================================

class PreferenceStore:
    """
    A single persisted value, stored as {"value": ...}.

    Used for the default announcement channel and the display timezone.
    Write failures are logged, never raised.
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self.logger = logging.getLogger(f"{__name__}.PreferenceStore")
        raw = read_json(self.path, default=None)
        self._value = raw.get("value") if isinstance(raw, dict) else None

    def get(self, default: Optional[Any] = None) -> Any:
        return self._value if self._value is not None else default

    def set(self, value: Any) -> bool:
        """
        Update the value in memory and on disk.

        Returns:
            True if the value was persisted.
        """
        self._value = value
        try:
            atomic_write_json(self.path, {"value": value})
        except PersistenceError as e:
            self.logger.error(str(e))
            return False
        return True

    def clear(self) -> bool:
        return self.set(None)
