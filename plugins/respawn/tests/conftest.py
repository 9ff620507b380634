"""
tests/conftest.py

Shared fixtures for respawn plugin tests.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from plugins.respawn.alerts import AlertDispatcher, WarningConfig
from plugins.respawn.durations import DurationStore
from plugins.respawn.engine import TimerEngine
from plugins.respawn.storage import TimerStore


class RecordingPublisher:
    """Async publish callable that records every payload."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def __call__(self, channel, payload):
        if self.fail:
            raise ConnectionError("channel unavailable")
        self.sent.append((channel, payload))

    def of_type(self, message_type):
        return [payload for _, payload in self.sent if payload["type"] == message_type]


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def failing_publisher():
    return RecordingPublisher(fail=True)


@pytest.fixture
def dispatcher(publisher):
    return AlertDispatcher(publish=publisher)


@pytest.fixture
def make_engine(dispatcher, tmp_path):
    """Factory for engines persisting under tmp_path."""
    def _make_engine(**kwargs):
        kwargs.setdefault("store", TimerStore(tmp_path / "active_timers.json"))
        kwargs.setdefault("durations", DurationStore(tmp_path / "durations.json"))
        kwargs.setdefault("warnings", WarningConfig.default())
        return TimerEngine(dispatcher=kwargs.pop("dispatcher", dispatcher), **kwargs)
    return _make_engine


@pytest.fixture
def mock_nats():
    """Create a mock NATS client for testing."""
    nats = AsyncMock()
    nats.publish = AsyncMock()

    # Track subscriptions
    nats._subscriptions = []

    async def mock_subscribe(subject, cb=None):
        sub = MagicMock()
        sub.subject = subject
        sub.callback = cb
        sub.unsubscribe = AsyncMock()
        nats._subscriptions.append(sub)
        return sub

    nats.subscribe = mock_subscribe

    def published(subject):
        """Decoded payloads published on a subject."""
        return [
            json.loads(call.args[1].decode())
            for call in nats.publish.call_args_list
            if call.args[0] == subject
        ]

    nats.published = published
    return nats


@pytest.fixture
def mock_message():
    """Factory for creating mock NATS messages."""
    def _make_message(data: dict, reply_to: str = None):
        msg = MagicMock()
        msg.data = json.dumps(data).encode()
        msg.reply = reply_to
        return msg
    return _make_message
