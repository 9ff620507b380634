"""
plugins/respawn/engine.py

Asyncio-based respawn timer engine.

Each active timer owns one event-loop handle for its spawn and one for every
warning threshold that is still ahead of it. Handles are never trusted on
their own: every callback carries the generation it was installed under and
does nothing if the timer has since been restarted, cancelled or fired.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Coroutine, Dict, Iterable, List, Optional, Set, Union

from .alerts import AlertDispatcher, WarningConfig
from .durations import DurationStore
from .errors import NotFoundError, PersistenceError, ValidationError
from .storage import TimerStore
from .timer import MAX_COOLDOWN_HOURS, TimerEntry, parse_hours


# What restore() does with a timer whose spawn time passed while offline
STALE_FIRE = "fire"
STALE_DROP = "drop"
STALE_POLICIES = (STALE_FIRE, STALE_DROP)

DEFAULT_COOLDOWN_HOURS = 2.0


class TimerEngine:
    """
    Owns all active respawn timers.

    Operations are synchronous and must be called from inside the running
    event loop. Disk writes and notifications they trigger run as background
    tasks; use flush() to wait for them.

    Args:
        dispatcher: Sends warnings and spawn announcements.
        store: Timer persistence (None keeps timers in memory only).
        durations: Last-used cooldown per boss.
        warnings: Warning thresholds.
        default_cooldown_hours: Cooldown for a "killed" boss never timed before.
        max_cooldown_hours: Longest accepted cooldown.
        stale_policy: "fire" or "drop" for timers that expired while offline.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        dispatcher: AlertDispatcher,
        store: Optional[TimerStore] = None,
        durations: Optional[DurationStore] = None,
        warnings: Optional[WarningConfig] = None,
        default_cooldown_hours: float = DEFAULT_COOLDOWN_HOURS,
        max_cooldown_hours: float = MAX_COOLDOWN_HOURS,
        stale_policy: str = STALE_FIRE,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if stale_policy not in STALE_POLICIES:
            raise ValueError(
                f"stale_policy must be one of {STALE_POLICIES}, got {stale_policy!r}"
            )

        self.dispatcher = dispatcher
        self.store = store
        self.durations = durations if durations is not None else DurationStore()
        self.warnings = warnings if warnings is not None else WarningConfig.default()
        self.default_cooldown_hours = parse_hours(default_cooldown_hours, max_cooldown_hours)
        self.max_cooldown_hours = max_cooldown_hours
        self.stale_policy = stale_policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._entries: Dict[str, TimerEntry] = {}
        self._handles: Dict[str, List[asyncio.TimerHandle]] = {}
        self._pending_warnings: Dict[str, List[float]] = {}
        self._generations: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._write_lock: Optional[asyncio.Lock] = None
        self.logger = logging.getLogger(f"{__name__}.TimerEngine")

    # =========================================================================
    # Public Operations
    # =========================================================================

    def start(
        self,
        name: str,
        channel: str,
        hours: Union[float, str],
        actor: Optional[str] = None,
        guild: Optional[str] = None
    ) -> TimerEntry:
        """
        Start (or restart) the timer for a boss.

        Any existing timer for the name is replaced, and its pending
        callbacks are invalidated before the new ones are installed.

        Args:
            name: Boss name.
            channel: Channel that receives the notifications.
            hours: Cooldown in hours.
            actor: User who triggered the start.
            guild: Server the channel belongs to.

        Returns:
            The new TimerEntry.

        Raises:
            ValidationError: If the name, channel or duration is invalid.
        """
        hours = parse_hours(hours, self.max_cooldown_hours)
        self._check_target(name, channel)

        now = self._now()
        return self._activate(
            name, channel, now + timedelta(hours=hours), hours, actor, guild, now,
            remember=True,
        )

    def start_at(
        self,
        name: str,
        channel: str,
        spawn_at: datetime,
        hours: Optional[Union[float, str]] = None,
        actor: Optional[str] = None,
        guild: Optional[str] = None
    ) -> TimerEntry:
        """
        Start (or restart) a timer that spawns at a given moment.

        Args:
            name: Boss name.
            channel: Channel that receives the notifications.
            spawn_at: Aware datetime of the next spawn.
            hours: Cooldown to remember for later kills. When omitted the
                   last known cooldown is kept, or the time until spawn
                   rounded up to whole hours is used without remembering it.
            actor: User who triggered the start.
            guild: Server the channel belongs to.

        Raises:
            ValidationError: If the spawn time is not in the future, or the
                             name, channel or duration is invalid.
        """
        now = self._now()
        if spawn_at.tzinfo is None:
            raise ValidationError("Spawn time must include a timezone")
        if spawn_at <= now:
            raise ValidationError("Spawn time must be in the future")

        remember = hours is not None
        if remember:
            hours = parse_hours(hours, self.max_cooldown_hours)
        else:
            hours = self.durations.get(name)
            if hours is None:
                hours = float(math.ceil((spawn_at - now).total_seconds() / 3600))
        self._check_target(name, channel)

        return self._activate(
            name, channel, spawn_at, hours, actor, guild, now, remember=remember
        )

    def reset(self, name: str, actor: Optional[str] = None) -> TimerEntry:
        """
        Restart an active timer with its current cooldown.

        Raises:
            NotFoundError: If no timer is active for name.
        """
        current = self._entries.get(name)
        if current is None:
            raise NotFoundError(f"No active timer for '{name}'")

        return self.start(
            name,
            current.channel,
            current.cooldown_hours,
            actor=actor or current.last_actor,
            guild=current.guild,
        )

    def on_killed(
        self,
        name: str,
        actor: Optional[str],
        channel: Optional[str] = None,
        guild: Optional[str] = None
    ) -> TimerEntry:
        """
        Restart a boss after it was killed.

        The cooldown is the last one used for this boss, falling back to the
        default. The channel is the one the kill came from, falling back to
        the active timer's channel.

        Raises:
            ValidationError: If no channel is known for the boss.
        """
        current = self._entries.get(name)

        hours = self.durations.get(name)
        if hours is None:
            hours = current.cooldown_hours if current else self.default_cooldown_hours

        if channel is None and current is not None:
            channel = current.channel
        if guild is None and current is not None:
            guild = current.guild

        return self.start(name, channel, hours, actor=actor, guild=guild)

    def cancel(self, name: str) -> bool:
        """
        Stop and remove a timer.

        Returns:
            True if a timer was removed, False if none was active.
        """
        if name not in self._entries:
            return False

        del self._entries[name]
        self._invalidate(name)
        self._persist()

        self.logger.info(f"Cancelled timer '{name}'")
        return True

    def restore(
        self,
        entries: Optional[Union[Dict[str, TimerEntry], Iterable[TimerEntry]]] = None,
        now: Optional[datetime] = None
    ) -> List[TimerEntry]:
        """
        Reinstall timers saved by a previous process.

        Timers keep their saved spawn time; warnings are recomputed against
        it and only those still ahead are scheduled. Names that are already
        active are left alone. Timers that expired while offline are handled
        by stale_policy and removed from storage.

        Args:
            entries: Saved timers; loaded from the store when None.
            now: Reference time (defaults to the clock).

        Returns:
            Timers that were reinstalled.
        """
        if entries is None:
            entries = self.store.load() if self.store else {}
        if isinstance(entries, dict):
            entries = list(entries.values())

        now = now or self._now()
        restored = []
        stale = []

        for entry in entries:
            if entry.name in self._entries:
                self.logger.warning(f"Timer '{entry.name}' already active, not restoring")
                continue

            if entry.name not in self.durations:
                self.durations.set(entry.name, entry.cooldown_hours)

            if entry.spawn_at > now:
                self._install(entry, now)
                restored.append(entry)
            else:
                stale.append(entry)

        for entry in stale:
            if self.stale_policy == STALE_FIRE:
                self.logger.info(f"Timer '{entry.name}' expired while offline, announcing spawn")
                self._spawn_task(self.dispatcher.notify_spawn(entry))
            else:
                self.logger.info(f"Dropping timer '{entry.name}' that expired while offline")

        if restored or stale:
            self._persist(with_durations=True)

        self.logger.info(f"Restored {len(restored)} timers ({len(stale)} expired)")
        return restored

    def list(self) -> List[TimerEntry]:
        """Active timers, soonest spawn first."""
        return sorted(self._entries.values(), key=lambda entry: entry.spawn_at)

    def get(self, name: str) -> Optional[TimerEntry]:
        return self._entries.get(name)

    def names(self) -> List[str]:
        return [entry.name for entry in self.list()]

    def generation(self, name: str) -> int:
        """Current generation of a name (0 if it was never started)."""
        return self._generations.get(name, 0)

    def pending_warnings(self, name: str) -> List[float]:
        """Warning thresholds (minutes) still scheduled for a timer."""
        return list(self._pending_warnings.get(name, []))

    async def flush(self) -> None:
        """Wait for outstanding disk writes and notifications."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Cancel every scheduled callback and wait for background work.

        Stored timers are left as they are so the next process can
        restore them.
        """
        for name in list(self._handles):
            self._invalidate(name)
        await self.flush()
        self.logger.info(f"Timer engine stopped ({len(self._entries)} timers saved)")

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _check_target(self, name: str, channel: Optional[str]) -> None:
        if not name or not name.strip():
            raise ValidationError("Boss name is required")
        if channel is None or str(channel) == "":
            raise ValidationError(f"No channel to announce '{name}' in")

    def _activate(
        self,
        name: str,
        channel: str,
        spawn_at: datetime,
        hours: float,
        actor: Optional[str],
        guild: Optional[str],
        now: datetime,
        remember: bool
    ) -> TimerEntry:
        entry = TimerEntry(
            name=name,
            spawn_at=spawn_at.astimezone(timezone.utc),
            cooldown_hours=hours,
            channel=str(channel),
            guild=str(guild) if guild is not None else None,
            last_actor=actor,
        )

        self._install(entry, now)
        if remember:
            self.durations.set(name, hours)
        self._persist(with_durations=remember)

        self.logger.info(
            f"Started timer '{name}' ({hours:g}h) in {entry.channel}, "
            f"spawns at {entry.spawn_at.isoformat()}"
        )
        return entry

    def _install(self, entry: TimerEntry, now: datetime) -> None:
        """Replace any timer for entry.name and schedule its callbacks."""
        self._invalidate(entry.name)
        generation = self._generations[entry.name]
        loop = asyncio.get_running_loop()

        handles = []
        scheduled = []
        for minutes in self.warnings.minutes:
            delay = (entry.spawn_at - timedelta(minutes=minutes) - now).total_seconds()
            if delay <= 0:
                self.logger.debug(f"Skipping {minutes:g}m warning for '{entry.name}', already past")
                continue
            handles.append(
                loop.call_later(delay, self._fire_warning, entry.name, generation, minutes)
            )
            scheduled.append(minutes)

        delay = max((entry.spawn_at - now).total_seconds(), 0.0)
        handles.append(loop.call_later(delay, self._fire_spawn, entry.name, generation))

        self._entries[entry.name] = entry
        self._handles[entry.name] = handles
        self._pending_warnings[entry.name] = scheduled
        self.logger.debug(
            f"Scheduled '{entry.name}' gen {generation}: spawn in {delay:.1f}s, "
            f"warnings {scheduled}"
        )

    def _invalidate(self, name: str) -> None:
        """Cancel a name's handles and move it to a new generation."""
        for handle in self._handles.pop(name, []):
            handle.cancel()
        self._pending_warnings.pop(name, None)
        self._generations[name] = self._generations.get(name, 0) + 1

    def _is_current(self, name: str, generation: int) -> bool:
        return name in self._entries and self._generations.get(name) == generation

    def _fire_warning(self, name: str, generation: int, minutes: float) -> None:
        if not self._is_current(name, generation):
            self.logger.debug(f"Ignoring stale {minutes:g}m warning for '{name}' gen {generation}")
            return

        pending = self._pending_warnings.get(name, [])
        if minutes in pending:
            pending.remove(minutes)

        self._spawn_task(self.dispatcher.notify_warning(self._entries[name], minutes))

    def _fire_spawn(self, name: str, generation: int) -> None:
        if not self._is_current(name, generation):
            self.logger.debug(f"Ignoring stale spawn for '{name}' gen {generation}")
            return

        entry = self._entries.pop(name)
        self._invalidate(name)
        self._persist()

        self.logger.info(f"Timer '{name}' reached spawn")
        self._spawn_task(self.dispatcher.notify_spawn(entry))

    # =========================================================================
    # Background Work
    # =========================================================================

    def _now(self) -> datetime:
        return self._clock()

    def _spawn_task(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _persist(self, with_durations: bool = False) -> None:
        """Queue a write of the current state; writes land in call order."""
        snapshot = list(self._entries.values())
        durations = self.durations.as_dict() if with_durations else None
        self._spawn_task(self._write(snapshot, durations))

    async def _write(
        self,
        snapshot: List[TimerEntry],
        durations: Optional[Dict[str, float]]
    ) -> None:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()

        async with self._write_lock:
            if self.store is not None:
                try:
                    await asyncio.to_thread(self.store.save, snapshot)
                except PersistenceError as e:
                    self.logger.error(f"Could not save timers: {e}")

            if durations is not None:
                try:
                    await asyncio.to_thread(self.durations.save, durations)
                except PersistenceError as e:
                    self.logger.error(f"Could not save durations: {e}")
