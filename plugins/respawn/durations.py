"""
plugins/respawn/durations.py

Last-used cooldown per boss.

A boss that has been timed once keeps its cooldown here after its timer
fires, so a later "killed" action can restart it without the duration
being given again.
"""

import logging
import math
from pathlib import Path
from typing import Dict, Optional

from .storage import PathLike, atomic_write_json, read_json


class DurationStore:
    """
    Mapping of boss name to cooldown hours, backed by a JSON file.

    set() only touches memory; save() writes a snapshot so the caller
    controls when (and on which thread) the disk write happens.

    Args:
        path: JSON file location, or None for an in-memory store.
    """

    def __init__(self, path: Optional[PathLike] = None):
        self.path = Path(path) if path is not None else None
        self.logger = logging.getLogger(f"{__name__}.DurationStore")
        self._durations: Dict[str, float] = {}

        if self.path is not None:
            self._load()

    def _load(self) -> None:
        raw = read_json(self.path, default={})
        if not isinstance(raw, dict):
            self.logger.warning(f"{self.path} does not hold a JSON object, ignoring it")
            return

        for name, hours in raw.items():
            try:
                hours = float(hours)
            except (TypeError, ValueError):
                self.logger.warning(f"Skipping invalid duration for '{name}': {hours!r}")
                continue
            if math.isfinite(hours) and hours > 0:
                self._durations[name] = hours

        self.logger.info(f"Loaded {len(self._durations)} durations from {self.path}")

    def get(self, name: str) -> Optional[float]:
        """Last cooldown used for name, or None if it was never timed."""
        return self._durations.get(name)

    def set(self, name: str, hours: float) -> None:
        self._durations[name] = float(hours)

    def as_dict(self) -> Dict[str, float]:
        """Copy of all known durations."""
        return dict(self._durations)

    def save(self, snapshot: Optional[Dict[str, float]] = None) -> None:
        """
        Write durations to disk.

        Args:
            snapshot: Data to write; defaults to the current mapping.

        Raises:
            PersistenceError: If the write failed.
        """
        if self.path is None:
            return
        data = snapshot if snapshot is not None else self.as_dict()
        atomic_write_json(self.path, data)

    def __contains__(self, name: str) -> bool:
        return name in self._durations

    def __len__(self) -> int:
        return len(self._durations)
