#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import pytest
from unittest.mock import AsyncMock, MagicMock

from bossbot import BossBot


@pytest.fixture
def mock_client():
    """NATS client double"""
    client = AsyncMock()
    client.is_closed = False
    client.publish = AsyncMock()

    async def subscribe(subject, cb=None):
        sub = MagicMock()
        sub.subject = subject
        sub.unsubscribe = AsyncMock()
        return sub

    client.subscribe = subscribe
    return client


@pytest.fixture
def config(tmp_path):
    return {
        'nats': {'url': 'nats://test:4222', 'connection_timeout': 1},
        'respawn': {'data_dir': str(tmp_path), 'status_interval': 0},
    }


class TestBossBot:
    """Test orchestrator lifecycle"""

    @pytest.mark.asyncio
    async def test_start_connects_and_loads_plugin(self, config, mock_client):
        bot = BossBot(config, nats_client=mock_client)

        await bot.start()

        mock_client.connect.assert_awaited_once()
        kwargs = mock_client.connect.call_args.kwargs
        assert kwargs['servers'] == ['nats://test:4222']
        assert kwargs['connect_timeout'] == 1
        assert kwargs['max_reconnect_attempts'] == -1
        assert bot.plugin is not None
        assert bot.plugin._initialized is True

        await bot.stop()
        assert bot.plugin is None
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_until_stop_requested(self, config, mock_client):
        bot = BossBot(config, nats_client=mock_client)
        bot.request_stop()

        await bot.run()

        assert bot.plugin is None
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closed_connection_not_closed_again(self, config, mock_client):
        bot = BossBot(config, nats_client=mock_client)
        await bot.start()
        mock_client.is_closed = True

        await bot.stop()

        mock_client.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_plugin_failure_stops_bot(self, config, mock_client):
        config['respawn']['stale_policy'] = 'never'
        bot = BossBot(config, nats_client=mock_client)

        with pytest.raises(ValueError):
            await bot.start()

        mock_client.close.assert_awaited_once()
