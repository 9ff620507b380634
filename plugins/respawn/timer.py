"""
plugins/respawn/timer.py

Timer model and duration utilities.

Provides:
- TimerEntry dataclass for a boss respawn timer
- Duration validation for user-supplied cooldowns
- Human-readable remaining time and spawn time formatting
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError


# Upper bound for a single cooldown (30 days)
MAX_COOLDOWN_HOURS = 720.0

CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


# =============================================================================
# Duration Parsing
# =============================================================================

def parse_hours(value: Any, max_hours: float = MAX_COOLDOWN_HOURS) -> float:
    """
    Validate a cooldown duration given in hours.

    Accepts ints, floats and numeric strings ("2", "2.5", "2,5").

    Args:
        value: Raw duration from a command or stored setting.
        max_hours: Largest accepted duration.

    Returns:
        The duration as a positive float.

    Raises:
        ValidationError: If the value is not a finite number in (0, max_hours].
    """
    if isinstance(value, bool):
        raise ValidationError(f"'{value}' is not a valid number of hours")

    if isinstance(value, str):
        value = value.strip().replace(",", ".")

    try:
        hours = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"'{value}' is not a valid number of hours")

    if not math.isfinite(hours) or hours <= 0:
        raise ValidationError("Duration must be a positive number of hours")

    if hours > max_hours:
        raise ValidationError(f"Duration can't be longer than {max_hours:g} hours")

    return hours


def to_epoch_ms(moment: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(round(moment.timestamp() * 1000))


def from_epoch_ms(value: Any) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)


def format_remaining(delta: timedelta, short: bool = False) -> str:
    """
    Format a timedelta as a human-readable string.

    Args:
        delta: The time difference to format.
        short: If True, use abbreviated format (e.g., "1d 4h 30m").

    Returns:
        Human-readable time string.
    """
    if delta.total_seconds() <= 0:
        return "now" if short else "spawning now"

    total_seconds = int(delta.total_seconds())

    days = total_seconds // 86400
    hours = (total_seconds % 86400) // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if short:
        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if not parts:
            parts.append(f"{seconds}s")
        return " ".join(parts)

    parts = []
    if days > 0:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours > 0:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes > 0:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    if not parts:
        if seconds > 0:
            parts.append(f"{seconds} second{'s' if seconds != 1 else ''}")
        else:
            parts.append("less than a second")
    return ", ".join(parts)


def format_spawn_time(moment: datetime, tz_name: str = "UTC") -> str:
    """
    Format an absolute spawn time in the given IANA timezone.

    Args:
        moment: Aware datetime.
        tz_name: Display timezone, e.g. "Asia/Shanghai".

    Returns:
        String like "2025-12-01 20:00 (Asia/Shanghai)".
    """
    local = moment.astimezone(ZoneInfo(tz_name))
    return f"{local:%Y-%m-%d %H:%M} ({tz_name})"


def format_hours(hours: float) -> str:
    """Render a cooldown like "2h" or "2.5h"."""
    return f"{hours:g}h"


def is_valid_timezone(tz_name: Any) -> bool:
    """Check that tz_name is a known IANA timezone."""
    if not isinstance(tz_name, str) or not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


# =============================================================================
# Clock Times
# =============================================================================

def parse_clock(value: str) -> Tuple[int, int]:
    """
    Parse a 24-hour clock time.

    Args:
        value: String like "16:30" or "7:05".

    Returns:
        (hour, minute)

    Raises:
        ValidationError: If the value is not a valid HH:MM time.
    """
    match = CLOCK_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError("Invalid time. Use 24-hour format: HH:MM")

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError("Invalid time. Use 24-hour format: HH:MM")
    return hour, minute


def next_clock_time(
    hour: int,
    minute: int,
    tz_name: str = "UTC",
    now: Optional[datetime] = None
) -> datetime:
    """
    Next moment the wall clock in tz_name shows hour:minute.

    A time that has already passed today (or is exactly now) means
    tomorrow.

    Returns:
        Aware UTC datetime.
    """
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(ZoneInfo(tz_name))
    target = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= local_now:
        target += timedelta(days=1)
    return target.astimezone(timezone.utc)


# =============================================================================
# Timer Model
# =============================================================================

@dataclass
class TimerEntry:
    """
    Represents a running respawn timer for one boss.

    Attributes:
        name: Boss name (case-sensitive, unique among active timers).
        spawn_at: When the boss becomes available again (UTC).
        cooldown_hours: Duration used to compute spawn_at.
        channel: Channel that receives warnings and the spawn announcement.
        guild: Server the channel belongs to, if known.
        last_actor: User who last killed or reset the boss.
    """

    name: str
    spawn_at: datetime
    cooldown_hours: float
    channel: str
    guild: Optional[str] = None
    last_actor: Optional[str] = None

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        """
        Time remaining until spawn.

        Returns:
            timedelta, or zero if the spawn time has passed.
        """
        now = now or datetime.now(timezone.utc)
        if now >= self.spawn_at:
            return timedelta(0)
        return self.spawn_at - now

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Check if the spawn time has been reached."""
        now = now or datetime.now(timezone.utc)
        return now >= self.spawn_at

    def format_remaining(self, short: bool = False, now: Optional[datetime] = None) -> str:
        return format_remaining(self.remaining(now), short=short)

    def to_dict(self) -> dict:
        """
        Convert to the on-disk record format.

        The name is the key of the enclosing mapping and is not repeated.
        """
        return {
            "spawnAt": to_epoch_ms(self.spawn_at),
            "cooldownHours": self.cooldown_hours,
            "channelRef": self.channel,
            "guildRef": self.guild,
            "lastActor": self.last_actor,
        }

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "TimerEntry":
        """
        Create a TimerEntry from an on-disk record.

        Args:
            name: Boss name (mapping key).
            data: Record with spawnAt, cooldownHours, channelRef.

        Returns:
            TimerEntry instance.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed.
        """
        channel = data["channelRef"]
        if channel is None:
            raise ValueError("channelRef is required")

        cooldown = float(data["cooldownHours"])
        if not math.isfinite(cooldown) or cooldown <= 0:
            raise ValueError(f"invalid cooldownHours: {data['cooldownHours']!r}")

        guild = data.get("guildRef")

        return cls(
            name=name,
            spawn_at=from_epoch_ms(data["spawnAt"]),
            cooldown_hours=cooldown,
            channel=str(channel),
            guild=str(guild) if guild is not None else None,
            last_actor=data.get("lastActor"),
        )
