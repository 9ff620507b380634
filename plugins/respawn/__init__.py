"""
plugins/respawn/__init__.py

Boss respawn timer plugin.

Provides respawn tracking with:
- Per-boss countdown timers that replace each other atomically
- Pre-spawn warnings (15 and 5 minutes by default)
- Spawn announcements with "killed" and "reset" actions
- Remembered cooldowns for one-click restarts
- JSON file persistence with restore on restart
"""

from .alerts import AlertDispatcher, WarningConfig
from .durations import DurationStore
from .engine import TimerEngine
from .errors import (
    DispatchError,
    NotFoundError,
    PersistenceError,
    RespawnError,
    ValidationError,
)
from .plugin import RespawnPlugin
from .storage import PreferenceStore, TimerStore
from .timer import TimerEntry, format_remaining, parse_hours

__all__ = [
    "AlertDispatcher",
    "DispatchError",
    "DurationStore",
    "NotFoundError",
    "PersistenceError",
    "PreferenceStore",
    "RespawnError",
    "RespawnPlugin",
    "TimerEngine",
    "TimerEntry",
    "TimerStore",
    "ValidationError",
    "WarningConfig",
    "format_remaining",
    "parse_hours",
]
