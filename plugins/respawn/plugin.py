"""
plugins/respawn/plugin.py

Boss respawn timer plugin using NATS-based architecture.

NATS Subjects:
    Command Handlers:
        respawn.command.timer.start - Start a timer (<name> <hours>)
        respawn.command.timer.reset - Restart a timer with its cooldown
        respawn.command.timer.delete - Delete a timer (by name or list number)
        respawn.command.timer.list - List active timers
        respawn.command.timer.setchannel - Use this channel for status posts
        respawn.command.timer.timezone - Set the display timezone
        respawn.command.timer.set - Start a timer that spawns at a clock time
        respawn.command.timer.commands - Show the command help

    Interactions (button clicks):
        respawn.interaction.timer.killed - Boss killed, restart its cooldown
        respawn.interaction.timer.reset - Restart the timer

    Events (Published):
        respawn.event.timer.started - Timer started or restarted
        respawn.event.timer.deleted - Timer deleted
        respawn.event.timer.warning - Pre-spawn warning sent
        respawn.event.timer.spawned - Boss spawned

    Chat (Published):
        respawn.chat.<channel>.send - Message for the platform connector
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from nats.aio.client import Client as NATS

from .alerts import AlertDispatcher, WarningConfig
from .durations import DurationStore
from .engine import DEFAULT_COOLDOWN_HOURS, STALE_FIRE, TimerEngine
from .errors import NotFoundError, RespawnError, ValidationError
from .scheduler import StatusScheduler
from .storage import PreferenceStore, TimerStore
from .timer import (
    MAX_COOLDOWN_HOURS,
    TimerEntry,
    format_hours,
    format_spawn_time,
    is_valid_timezone,
    next_clock_time,
    parse_clock,
    parse_hours,
)


class RespawnPlugin:
    """
    Boss respawn timer plugin.

    Commands:
        !start <boss> <hours> - Start a respawn timer
        !reset <boss> - Restart a timer with its last cooldown
        !delete <boss|number> - Delete a timer
        !list - List active timers, soonest first
        !setchannel - Post status boards in this channel
        !timezone <zone> - Show spawn times in this timezone
        !set <HH:MM> [hours] <boss> - Spawn at a clock time (24h, display timezone)
        !commands - Show this help

    Features:
        - Pre-spawn warnings (15 and 5 minutes by default)
        - Spawn announcements with "killed" and "reset" buttons
        - Cooldown remembered per boss for one-click restarts
        - JSON file persistence with restore on restart
        - Periodic status board in the default channel
    """

    NAMESPACE = "respawn"
    VERSION = "1.0.0"
    DESCRIPTION = "Track boss respawn timers with warnings and kill buttons"

    # NATS subjects - Commands
    SUBJECT_START = "respawn.command.timer.start"
    SUBJECT_RESET = "respawn.command.timer.reset"
    SUBJECT_DELETE = "respawn.command.timer.delete"
    SUBJECT_LIST = "respawn.command.timer.list"
    SUBJECT_SETCHANNEL = "respawn.command.timer.setchannel"
    SUBJECT_TIMEZONE = "respawn.command.timer.timezone"
    SUBJECT_SET = "respawn.command.timer.set"
    SUBJECT_COMMANDS = "respawn.command.timer.commands"

    # NATS subjects - Interactions
    INTERACTION_KILLED = "respawn.interaction.timer.killed"
    INTERACTION_RESET = "respawn.interaction.timer.reset"

    # NATS subjects - Events
    EVENT_STARTED = "respawn.event.timer.started"
    EVENT_DELETED = "respawn.event.timer.deleted"
    EVENT_WARNING = "respawn.event.timer.warning"
    EVENT_SPAWNED = "respawn.event.timer.spawned"

    # State files under data_dir
    TIMERS_FILE = "active_timers.json"
    DURATIONS_FILE = "durations.json"
    CHANNEL_FILE = "default_channel.json"
    TIMEZONE_FILE = "timezone.json"

    def __init__(self, nats_client: NATS, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the respawn plugin.

        Args:
            nats_client: Connected NATS client for messaging.
            config: Optional configuration dictionary.
        """
        self.nats = nats_client
        self.config = config or {}
        self.logger = logging.getLogger(f"plugin.{self.NAMESPACE}")

        # Configuration with defaults
        data_dir = self.config.get("data_dir", "data")
        self.data_dir = Path(data_dir) if data_dir else None
        self.default_cooldown_hours = self.config.get(
            "default_cooldown_hours", DEFAULT_COOLDOWN_HOURS
        )
        self.max_cooldown_hours = self.config.get("max_cooldown_hours", MAX_COOLDOWN_HOURS)
        self.warnings = self._warning_config(self.config.get("warning_minutes"))
        self.stale_policy = self.config.get("stale_policy", STALE_FIRE)
        self.status_interval = self.config.get("status_interval", 3600)
        self.default_timezone = self.config.get("timezone", "UTC")
        self.mention = self.config.get("mention")
        self.emit_events = self.config.get("emit_events", True)

        self.engine: Optional[TimerEngine] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.status_scheduler: Optional[StatusScheduler] = None
        self.channel_pref: Optional[PreferenceStore] = None
        self.timezone_pref: Optional[PreferenceStore] = None

        self._subscriptions = []
        self._initialized = False

    async def initialize(self) -> None:
        """
        Initialize the plugin.

        - Opens state files
        - Restores saved timers
        - Starts the status scheduler
        - Subscribes to NATS subjects
        """
        self.logger.info(f"Initializing {self.NAMESPACE} plugin v{self.VERSION}")

        store = None
        durations = DurationStore()
        if self.data_dir is not None:
            store = TimerStore(self.data_dir / self.TIMERS_FILE)
            durations = DurationStore(self.data_dir / self.DURATIONS_FILE)
            self.channel_pref = PreferenceStore(self.data_dir / self.CHANNEL_FILE)
            self.timezone_pref = PreferenceStore(self.data_dir / self.TIMEZONE_FILE)

        self.dispatcher = AlertDispatcher(
            publish=self._publish_chat,
            timezone=self._current_timezone(),
            mention=self.mention,
        )

        self.engine = TimerEngine(
            dispatcher=self.dispatcher,
            store=store,
            durations=durations,
            warnings=self.warnings,
            default_cooldown_hours=self.default_cooldown_hours,
            max_cooldown_hours=self.max_cooldown_hours,
            stale_policy=self.stale_policy,
        )
        restored = self.engine.restore()

        if self.status_interval:
            self.status_scheduler = StatusScheduler(
                interval=self.status_interval,
                on_tick=self._post_status,
            )
            await self.status_scheduler.start()

        handlers = {
            self.SUBJECT_START: self._handle_start,
            self.SUBJECT_RESET: self._handle_reset,
            self.SUBJECT_DELETE: self._handle_delete,
            self.SUBJECT_LIST: self._handle_list,
            self.SUBJECT_SETCHANNEL: self._handle_setchannel,
            self.SUBJECT_TIMEZONE: self._handle_timezone,
            self.SUBJECT_SET: self._handle_set,
            self.SUBJECT_COMMANDS: self._handle_commands,
            self.INTERACTION_KILLED: self._handle_killed,
            self.INTERACTION_RESET: self._handle_reset_interaction,
        }
        for subject, handler in handlers.items():
            sub = await self.nats.subscribe(subject, cb=handler)
            self._subscriptions.append(sub)

        self._initialized = True
        self.logger.info(
            f"{self.NAMESPACE} plugin loaded with {len(restored)} restored timers"
        )

    async def shutdown(self) -> None:
        """
        Shutdown the plugin.

        - Unsubscribes from NATS subjects so no new commands arrive
        - Stops the status scheduler
        - Stops the timer engine (saved timers stay on disk)
        """
        for sub in self._subscriptions:
            await sub.unsubscribe()
        self._subscriptions.clear()

        if self.status_scheduler:
            await self.status_scheduler.stop()

        if self.engine:
            await self.engine.shutdown()

        self._initialized = False
        self.logger.info(f"{self.NAMESPACE} plugin unloaded")

    # =========================================================================
    # Command Handlers
    # =========================================================================

    async def _handle_start(self, msg) -> None:
        """
        Handle !start <boss> <hours>.

        The boss name may contain spaces; the last word is the duration.

        Message format:
        {
            "channel": "string",
            "user": "string",
            "guild": "string",
            "args": "Dragon Lord 2.5",
            "reply_to": "respawn.reply.xyz"
        }
        """
        await self._run_command(msg, "start", self._start)

    async def _start(self, data: dict) -> dict:
        parts = (data.get("args") or "").strip().rsplit(None, 1)
        if len(parts) < 2:
            raise ValidationError(
                "Usage: !start <boss> <hours>\nExample: !start Dragon 2.5"
            )

        name, hours = parts
        entry = self.engine.start(
            name,
            data.get("channel"),
            hours,
            actor=data.get("user"),
            guild=data.get("guild"),
        )
        await self._emit_event(self.EVENT_STARTED, {
            "channel": entry.channel,
            "user": data.get("user"),
            "reason": "start",
            "timer": self._describe(entry),
        })
        return self._result(
            entry,
            f"✅ Timer set for **{entry.name}**: spawns in "
            f"{entry.format_remaining()} ({self._spawn_time(entry)})"
        )

    async def _handle_reset(self, msg) -> None:
        """
        Handle !reset <boss>.

        Message format:
        {
            "channel": "string",
            "user": "string",
            "args": "Dragon",
            "reply_to": "respawn.reply.xyz"
        }
        """
        await self._run_command(msg, "reset", self._reset)

    async def _reset(self, data: dict) -> dict:
        name = (data.get("args") or data.get("name") or "").strip()
        if not name:
            raise ValidationError("Usage: !reset <boss>")

        entry = self.engine.reset(name, actor=data.get("user"))
        await self._emit_event(self.EVENT_STARTED, {
            "channel": entry.channel,
            "user": data.get("user"),
            "reason": "reset",
            "timer": self._describe(entry),
        })
        return self._result(
            entry,
            f"🔄 **{entry.name}** reset ({format_hours(entry.cooldown_hours)}), "
            f"spawns at {self._spawn_time(entry)}"
        )

    async def _handle_delete(self, msg) -> None:
        """
        Handle !delete <boss|number>.

        A number refers to the position in !list when no timer has that
        exact name.
        """
        await self._run_command(msg, "delete", self._delete)

    async def _delete(self, data: dict) -> dict:
        identifier = (data.get("args") or "").strip()
        if not identifier:
            raise ValidationError("Usage: !delete <boss or number>")

        name = identifier
        if name not in self.engine and identifier.isdigit():
            timers = self.engine.list()
            index = int(identifier) - 1
            if not 0 <= index < len(timers):
                raise NotFoundError(f"There is no timer number {identifier}")
            name = timers[index].name

        if not self.engine.cancel(name):
            raise NotFoundError(f"No active timer for '{name}'")

        await self._emit_event(self.EVENT_DELETED, {
            "channel": data.get("channel"),
            "user": data.get("user"),
            "name": name,
        })
        return {"name": name, "message": f"🗑️ Timer for **{name}** deleted."}

    async def _handle_list(self, msg) -> None:
        """Handle !list."""
        await self._run_command(msg, "list", self._list)

    async def _list(self, data: dict) -> dict:
        timers = self.engine.list()
        now = datetime.now(timezone.utc)
        return {
            "timers": [
                {
                    "name": entry.name,
                    "remaining": entry.format_remaining(short=True, now=now),
                    "spawn_at": entry.spawn_at.isoformat(),
                    "cooldown_hours": entry.cooldown_hours,
                    "last_actor": entry.last_actor,
                }
                for entry in timers
            ],
            "message": self.dispatcher.render_board(timers, now=now),
        }

    async def _handle_setchannel(self, msg) -> None:
        """Handle !setchannel."""
        await self._run_command(msg, "setchannel", self._setchannel)

    async def _setchannel(self, data: dict) -> dict:
        channel = data.get("channel")
        if not channel:
            raise ValidationError("No channel in request")
        if self.channel_pref is None:
            raise ValidationError("Settings are not persisted in this setup")

        self.channel_pref.set(str(channel))
        self.logger.info(f"Default channel set to {channel}")
        return {
            "channel": channel,
            "message": "📺 Boss status updates will be posted in this channel",
        }

    async def _handle_timezone(self, msg) -> None:
        """Handle !timezone <IANA zone>, e.g. !timezone Asia/Shanghai."""
        await self._run_command(msg, "timezone", self._timezone)

    async def _timezone(self, data: dict) -> dict:
        zone = (data.get("args") or "").strip()
        if not zone:
            current = self.dispatcher.timezone
            return {"timezone": current, "message": f"🕒 Times are shown in {current}"}

        if not is_valid_timezone(zone):
            raise ValidationError(f"Unknown timezone '{zone}'. Example: Asia/Shanghai")

        if self.timezone_pref is not None:
            self.timezone_pref.set(zone)
        self.dispatcher.timezone = zone
        self.logger.info(f"Display timezone set to {zone}")
        return {"timezone": zone, "message": f"🕒 Times will be shown in {zone}"}

    async def _handle_set(self, msg) -> None:
        """
        Handle !set <HH:MM> [hours] <boss>.

        The clock time is read in the display timezone; a time that has
        already passed today means tomorrow. When hours is given it is
        remembered as the boss's cooldown.

        Message format:
        {
            "channel": "string",
            "user": "string",
            "args": "16:30 2 Dragon Lord",
            "reply_to": "respawn.reply.xyz"
        }
        """
        await self._run_command(msg, "set", self._set)

    async def _set(self, data: dict) -> dict:
        parts = (data.get("args") or "").split()
        if len(parts) < 2:
            raise ValidationError(
                "Usage: !set <HH:MM> [hours] <boss>\nExample: !set 16:30 2 Dragon"
            )

        hour, minute = parse_clock(parts[0])
        rest = parts[1:]
        hours = None
        if len(rest) > 1:
            try:
                hours = parse_hours(rest[0], self.max_cooldown_hours)
                rest = rest[1:]
            except ValidationError:
                hours = None
        name = " ".join(rest)

        spawn_at = next_clock_time(hour, minute, self.dispatcher.timezone)
        entry = self.engine.start_at(
            name,
            data.get("channel"),
            spawn_at,
            hours=hours,
            actor=data.get("user"),
            guild=data.get("guild"),
        )
        await self._emit_event(self.EVENT_STARTED, {
            "channel": entry.channel,
            "user": data.get("user"),
            "reason": "set",
            "timer": self._describe(entry),
        })
        return self._result(
            entry,
            f"⏰ **{entry.name}** will spawn at {self._spawn_time(entry)} "
            f"(in {entry.format_remaining()}, cooldown "
            f"{format_hours(entry.cooldown_hours)})"
        )

    async def _handle_commands(self, msg) -> None:
        """Handle !commands."""
        await self._run_command(msg, "commands", self._commands)

    async def _commands(self, data: dict) -> dict:
        lines = [
            "**Available Commands:**",
            "`!start <boss> <hours>` - Start a respawn timer",
            "`!set <HH:MM> [hours] <boss>` - Spawn at a clock time (24h, "
            f"{self.dispatcher.timezone})",
            "`!reset <boss>` - Restart a timer with its last cooldown",
            "`!delete <boss|number>` - Delete a timer",
            "`!list` - Show all active timers",
            "`!setchannel` - Post status updates in this channel",
            "`!timezone [zone]` - Show or set the display timezone",
            "`!commands` - Show this help",
            f"Warnings: {self.warnings}",
        ]
        return {
            "timezone": self.dispatcher.timezone,
            "warnings": self.warnings.to_string(),
            "message": "\n".join(lines),
        }

    # =========================================================================
    # Interaction Handlers
    # =========================================================================

    async def _handle_killed(self, msg) -> None:
        """
        Handle a "killed" button click.

        Message format:
        {
            "channel": "string",
            "user": "string",
            "action_id": "killed:Dragon",
            "reply_to": "respawn.reply.xyz"
        }
        """
        await self._run_command(msg, "killed", self._killed)

    async def _killed(self, data: dict) -> dict:
        name = self._interaction_name(data)
        user = data.get("user")
        entry = self.engine.on_killed(
            name,
            user,
            channel=data.get("channel"),
            guild=data.get("guild"),
        )
        await self._emit_event(self.EVENT_STARTED, {
            "channel": entry.channel,
            "user": user,
            "reason": "killed",
            "timer": self._describe(entry),
        })
        return self._result(
            entry,
            f"⚔️ **{entry.name}** killed by {user or 'someone'}! "
            f"Next spawn: {self._spawn_time(entry)} "
            f"(cooldown {format_hours(entry.cooldown_hours)})"
        )

    async def _handle_reset_interaction(self, msg) -> None:
        """Handle a "reset" button click."""
        await self._run_command(msg, "reset", self._reset_interaction)

    async def _reset_interaction(self, data: dict) -> dict:
        return await self._reset({**data, "args": self._interaction_name(data)})

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _publish_chat(self, channel: str, payload: dict) -> None:
        """Deliver a dispatcher payload to the channel's chat subject."""
        await self.nats.publish(
            f"respawn.chat.{channel}.send",
            json.dumps(payload).encode()
        )

        if payload.get("type") == "boss_spawn":
            await self._emit_event(self.EVENT_SPAWNED, {
                "channel": channel,
                "name": payload.get("boss"),
                "spawn_at": payload.get("spawn_at"),
            })
        elif payload.get("type") == "boss_warning":
            await self._emit_event(self.EVENT_WARNING, {
                "channel": channel,
                "name": payload.get("boss"),
                "minutes_remaining": payload.get("minutes"),
            })

    async def _post_status(self) -> None:
        """Status scheduler tick: post the board to the default channel."""
        channel = self.channel_pref.get() if self.channel_pref else None
        if not channel:
            self.logger.debug("No default channel set, skipping status board")
            return

        timers = self.engine.list()
        if not timers:
            return

        await self.dispatcher.notify_status(channel, timers)

    # =========================================================================
    # Utility Methods
    # =========================================================================

    async def _run_command(self, msg, command: str, action) -> None:
        """
        Decode a request, run the action and reply with its result.

        RespawnErrors become error replies; anything else is logged.
        """
        reply_to = None
        try:
            data = json.loads(msg.data.decode())
            reply_to = data.get("reply_to") or getattr(msg, "reply", None)

            result = await action(data)
            await self._send_reply(reply_to, {"success": True, "result": result})

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {command} request: {e}")
        except RespawnError as e:
            self.logger.info(f"{command} rejected: {e}")
            await self._send_reply(reply_to, {"success": False, "error": f"⏰ {e}"})
        except Exception as e:
            self.logger.exception(f"Error handling {command}: {e}")
            await self._send_reply(reply_to, {
                "success": False,
                "error": f"⏰ An error occurred while processing {command}."
            })

    def _interaction_name(self, data: dict) -> str:
        """Boss name from an interaction ("name", or "action_id" like "killed:Dragon")."""
        name = data.get("name")
        if not name:
            action_id = data.get("action_id", "")
            _, _, name = action_id.partition(":")
        if not name:
            raise ValidationError("Interaction does not name a boss")
        return name

    def _current_timezone(self) -> str:
        """
        Display timezone: the saved preference, else the configured zone,
        else UTC. Unknown zone names are skipped with a warning.
        """
        candidates = []
        if self.timezone_pref is not None:
            candidates.append(("saved", self.timezone_pref.get()))
        candidates.append(("configured", self.default_timezone))

        for source, zone in candidates:
            if zone is None:
                continue
            if is_valid_timezone(zone):
                return zone
            self.logger.warning(f"Ignoring unknown {source} timezone {zone!r}")
        return "UTC"

    def _warning_config(self, value: Any) -> WarningConfig:
        """
        Warning thresholds from config: a list of minutes or a string like
        "15,5". Missing means the defaults.

        Raises:
            ValueError: If a string value cannot be parsed.
        """
        if value is None:
            return WarningConfig.default()
        if isinstance(value, str):
            return WarningConfig.parse(value)
        return WarningConfig(minutes=list(value))

    def _spawn_time(self, entry: TimerEntry) -> str:
        return format_spawn_time(entry.spawn_at, self.dispatcher.timezone)

    def _describe(self, entry: TimerEntry) -> dict:
        return {
            "name": entry.name,
            "spawn_at": entry.spawn_at.isoformat(),
            "cooldown_hours": entry.cooldown_hours,
            "channel": entry.channel,
            "last_actor": entry.last_actor,
        }

    def _result(self, entry: TimerEntry, message: str) -> dict:
        result = self._describe(entry)
        result["remaining"] = entry.format_remaining()
        result["message"] = message
        return result

    async def _send_reply(self, reply_to: Optional[str], response: dict) -> None:
        """
        Send a reply to a command.

        Args:
            reply_to: NATS subject to reply to.
            response: Response dictionary.
        """
        if reply_to:
            await self.nats.publish(reply_to, json.dumps(response).encode())

    async def _emit_event(self, event_type: str, data: dict) -> None:
        """
        Emit an event via NATS.

        Args:
            event_type: The event subject.
            data: Event data.
        """
        if not self.emit_events:
            return
        event = {
            "event": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data
        }
        await self.nats.publish(event_type, json.dumps(event).encode())
