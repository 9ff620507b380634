"""
Pre-spawn warnings and spawn announcements.

WarningConfig holds the lead times (in minutes) at which a warning is sent
before a boss spawns. AlertDispatcher turns fired timer events into chat
messages and never lets a delivery failure escape.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
import logging

from .errors import DispatchError
from .timer import TimerEntry, format_hours, format_spawn_time


# Maximum warning lead time (minutes before spawn)
MAX_WARNING_MINUTES = 60

# Default warning thresholds
DEFAULT_WARNINGS = [15, 5]


@dataclass
class WarningConfig:
    """
    Warning thresholds for respawn timers.

    Attributes:
        minutes: Lead times in minutes, e.g. [15, 5] warns 15 and
                 5 minutes before spawn.
    """
    minutes: List[float] = field(default_factory=lambda: DEFAULT_WARNINGS.copy())

    def __post_init__(self):
        """Drop invalid values, remove duplicates, sort descending."""
        valid = {
            m for m in self.minutes
            if isinstance(m, (int, float)) and not isinstance(m, bool)
            and 0 < m <= MAX_WARNING_MINUTES
        }
        self.minutes = sorted(valid, reverse=True)

    @classmethod
    def default(cls) -> 'WarningConfig':
        return cls(minutes=DEFAULT_WARNINGS.copy())

    @classmethod
    def parse(cls, config_str: str) -> 'WarningConfig':
        """
        Parse from comma-separated string.

        Args:
            config_str: String like "15,5" or "30,15,5".

        Returns:
            Parsed WarningConfig.

        Raises:
            ValueError: If format is invalid.
        """
        if not config_str or not config_str.strip():
            raise ValueError("Warning config cannot be empty")

        try:
            parts = [p.strip() for p in config_str.split(",")]
            minutes = [int(p) for p in parts if p]
        except (ValueError, TypeError) as e:
            raise ValueError("Invalid warning format. Use: 15,5 or 30,15,5") from e

        if not minutes:
            raise ValueError("At least one warning time required")

        invalid = [m for m in minutes if m <= 0 or m > MAX_WARNING_MINUTES]
        if invalid:
            raise ValueError(
                f"Warning minutes must be between 1 and {MAX_WARNING_MINUTES}. "
                f"Invalid: {invalid}"
            )

        return cls(minutes=minutes)

    def to_string(self) -> str:
        return ",".join(f"{m:g}" for m in self.minutes)

    @staticmethod
    def label(minutes: float) -> str:
        """Threshold label used in messages, e.g. "15 minutes"."""
        return f"{minutes:g} minute{'s' if minutes != 1 else ''}"

    def __str__(self) -> str:
        if not self.minutes:
            return "no warnings"
        return ", ".join(self.label(m) for m in self.minutes) + " before spawn"


# Outbound transport: async callable(channel, payload)
Publisher = Callable[[str, Dict[str, Any]], Awaitable[None]]


class AlertDispatcher:
    """
    Sends timer notifications to the channel that owns each timer.

    Attributes:
        publish: Async callable that delivers a payload to a channel.
        timezone: IANA timezone used to render spawn times.
        mention: Optional mention prefix for warnings and spawns
                 (e.g. "@everyone").
    """

    def __init__(
        self,
        publish: Publisher,
        timezone: str = "UTC",
        mention: Optional[str] = None
    ):
        self.publish = publish
        self.timezone = timezone
        self.mention = mention
        self.logger = logging.getLogger(f"{__name__}.AlertDispatcher")

    async def notify_warning(self, entry: TimerEntry, minutes: float) -> bool:
        """
        Announce that a boss spawns in `minutes`.

        Returns:
            True if the message was delivered.
        """
        def build():
            label = WarningConfig.label(minutes)
            message = (
                f"🚨 **{entry.name}** will spawn in **{label}**! "
                f"Spawns at {format_spawn_time(entry.spawn_at, self.timezone)}"
            )
            return {
                "channel": entry.channel,
                "message": self._with_mention(message),
                "type": "boss_warning",
                "boss": entry.name,
                "minutes": minutes,
                "spawn_at": entry.spawn_at.isoformat(),
            }

        return await self._send(entry, "boss_warning", build)

    async def notify_spawn(self, entry: TimerEntry) -> bool:
        """
        Announce that a boss has spawned.

        The payload carries "killed" and "reset" actions so the platform
        connector can render them as buttons.

        Returns:
            True if the message was delivered.
        """
        def build():
            message = (
                f"⚔️ **{entry.name}** has spawned! "
                f"Cooldown: {format_hours(entry.cooldown_hours)}"
            )
            return {
                "channel": entry.channel,
                "message": self._with_mention(message),
                "type": "boss_spawn",
                "boss": entry.name,
                "spawn_at": entry.spawn_at.isoformat(),
                "actions": [
                    {"id": f"killed:{entry.name}", "label": f"{entry.name} Killed"},
                    {"id": f"reset:{entry.name}", "label": "Reset"},
                ],
            }

        return await self._send(entry, "boss_spawn", build)

    async def notify_status(self, channel: str, entries: Iterable[TimerEntry]) -> bool:
        """
        Post a board of all active timers to a channel.

        Returns:
            True if the message was delivered.
        """
        try:
            payload = {
                "channel": channel,
                "message": self.render_board(entries),
                "type": "boss_status",
            }
            await self.publish(channel, payload)
        except Exception as e:
            self._log_failure(DispatchError(f"status board to {channel}: {e}"))
            return False
        return True

    def render_board(
        self,
        entries: Iterable[TimerEntry],
        now: Optional[datetime] = None
    ) -> str:
        """Render active timers, soonest first, one line each."""
        now = now or datetime.now(timezone.utc)
        entries = sorted(entries, key=lambda e: e.spawn_at)
        if not entries:
            return "👑 No active boss timers"

        lines = ["👑 Boss timers:"]
        for index, entry in enumerate(entries, start=1):
            line = (
                f"  {index}. {entry.name}: {entry.format_remaining(short=True, now=now)} "
                f"(at {format_spawn_time(entry.spawn_at, self.timezone)})"
            )
            if entry.last_actor:
                line += f", killed by {entry.last_actor}"
            lines.append(line)
        return "\n".join(lines)

    async def _send(
        self,
        entry: TimerEntry,
        message_type: str,
        build: Callable[[], Dict[str, Any]]
    ) -> bool:
        """Build and publish a payload; any failure is logged, not raised."""
        try:
            payload = build()
            await self.publish(entry.channel, payload)
        except Exception as e:
            self._log_failure(DispatchError(
                f"{message_type} for '{entry.name}' to {entry.channel}: {e}"
            ))
            return False

        self.logger.info(f"Sent {message_type} for '{entry.name}' to {entry.channel}")
        return True

    def _with_mention(self, message: str) -> str:
        return f"{self.mention} {message}" if self.mention else message

    def _log_failure(self, error: DispatchError) -> None:
        self.logger.error(f"Notification failed: {error}")
