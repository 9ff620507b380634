"""
plugins/respawn/scheduler.py

Periodic status board scheduler.

Runs a single polling loop that posts the list of active timers to the
default channel at a fixed interval. Respawn timers themselves are driven
by TimerEngine; this loop only reports on them.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional


class StatusScheduler:
    """
    Calls an async callback every `interval` seconds.

    Args:
        interval: Seconds between ticks (must be positive).
        on_tick: Async callback run on each tick.
    """

    def __init__(
        self,
        interval: float = 3600.0,
        on_tick: Optional[Callable[[], Awaitable[None]]] = None
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.interval = interval
        self.on_tick = on_tick
        self.running = False
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(f"{__name__}.scheduler")

    async def start(self) -> None:
        """Start the loop in a background task."""
        if self.running:
            self.logger.warning("Status scheduler already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._loop())
        self.logger.info(f"Status scheduler started (interval: {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if not self.running:
            return

        self.running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.logger.info("Status scheduler stopped")

    async def _loop(self) -> None:
        """
        Sleep, tick, repeat.

        The first tick happens one interval after start. A failing
        callback is logged and the loop keeps running.
        """
        while self.running:
            try:
                await asyncio.sleep(self.interval)

                if self.on_tick:
                    try:
                        await self.on_tick()
                    except Exception as e:
                        self.logger.exception(f"Error in status callback: {e}")

                self.ticks += 1

            except asyncio.CancelledError:
                self.logger.debug("Status loop cancelled")
                raise
