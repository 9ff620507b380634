#!/usr/bin/env python3
"""
Boss respawn bot orchestrator

Connects to the NATS event bus, starts the respawn plugin, and runs until
interrupted. The chat platform connector lives outside this process: it
publishes commands and button clicks on respawn.command.* and
respawn.interaction.* subjects and renders respawn.chat.*.send messages.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

from nats.aio.client import Client as NATS

from common.config import get_config, setup_logging
from plugins.respawn import RespawnPlugin


logger = logging.getLogger(__name__)


class BossBot:
    """
    Bot orchestrator

    Responsibilities:
    1. Connect to NATS
    2. Start the respawn plugin (restores saved timers)
    3. Coordinate graceful shutdown
    """

    def __init__(self, config: Dict[str, Any], nats_client: Optional[NATS] = None):
        self.config = config
        self.nats = nats_client or NATS()
        self.plugin: Optional[RespawnPlugin] = None
        self._stop_event = asyncio.Event()

    async def start(self):
        """Start all components in order"""
        nats_config = self.config.get('nats', {})
        nats_url = nats_config.get('url', 'nats://localhost:4222')

        logger.info(f"Connecting to NATS: {nats_url}")
        await self.nats.connect(
            servers=[nats_url],
            max_reconnect_attempts=nats_config.get('max_reconnect_attempts', -1),
            reconnect_time_wait=nats_config.get('reconnect_delay', 2),
            connect_timeout=nats_config.get('connection_timeout', 5)
        )
        logger.info("Connected to NATS")

        try:
            self.plugin = RespawnPlugin(self.nats, self.config.get('respawn', {}))
            await self.plugin.initialize()
        except Exception as e:
            logger.error(f"Failed to start respawn plugin: {e}", exc_info=True)
            await self.stop()
            raise

        logger.info("✅ Boss bot started")

    async def run(self):
        """Start, then block until request_stop() is called"""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    def request_stop(self):
        self._stop_event.set()

    async def stop(self):
        """Stop all components in reverse order"""
        logger.info("Shutting down...")

        if self.plugin:
            await self.plugin.shutdown()
            self.plugin = None

        if not self.nats.is_closed:
            await self.nats.close()

        logger.info("✅ Boss bot stopped")


async def run_bot(conf: Dict[str, Any]):
    bot = BossBot(conf)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.request_stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await bot.run()


def main():
    """Entry point

    Returns:
        0 on clean shutdown, 1 if startup failed
    """
    conf = get_config()
    setup_logging(conf)

    try:
        asyncio.run(run_bot(conf))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.error(f"Boss bot exited with error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
