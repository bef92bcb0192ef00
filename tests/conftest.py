"""Shared fixtures for commandinator tests."""

import os
import threading
import pytest

from commandinator.bot.types import (
    BotCommand,
    Channel,
    Guild,
    MessageContext,
    SentMessage,
    User,
)


BOT_ID = "bot-uuid-1234-5678-90ab-cdef12345678"
OWNER_ID = "owner-uuid-0000"
USER_ID = "a1b2c3d4-e5f6-7890-abcd-ef1234567890"


class FakeTransport:
    """In-memory transport recording everything the router does."""

    def __init__(self, own_id=BOT_ID, failing_channels=(), failing_deletes=False):
        self.own_id = own_id
        self.users = {}
        self.sent = []
        self.deleted = []
        self.handlers = []
        self.streaming = False
        self.ready = True
        self._failing_channels = set(failing_channels)
        self._failing_deletes = failing_deletes
        self._counter = 0
        self._lock = threading.Lock()

    def is_ready(self):
        return self.ready

    def send(self, channel_id, message):
        if channel_id in self._failing_channels:
            raise ConnectionError(f"cannot reach {channel_id}")
        with self._lock:
            self._counter += 1
            sent = SentMessage(id=f"sent-{self._counter}", channel_id=channel_id, content=message.content)
            self.sent.append((channel_id, message))
        return sent

    def delete(self, message):
        if self._failing_deletes:
            raise ConnectionError("already deleted")
        self.deleted.append(message)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def start_streaming(self):
        self.streaming = True

    def stop_streaming(self):
        self.streaming = False

    def contents(self):
        return [message.content for _, message in self.sent]


@pytest.fixture
def transport():
    """A fake transport."""
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for fake transports with injected failures."""
    return FakeTransport


@pytest.fixture
def author():
    """The user sending test messages."""
    return User(id=USER_ID, name="Alice")


@pytest.fixture
def owner():
    """The bot owner."""
    return User(id=OWNER_ID, name="Owner")


@pytest.fixture
def guild(author, owner):
    """A guild with two channels and a few members."""
    guild = Guild(id="guild-1", name="Test Guild")
    guild.channels["chan-general"] = Channel(id="chan-general", name="general", guild=guild)
    guild.channels["chan-random"] = Channel(id="chan-random", name="random", guild=guild)
    guild.members[author.id] = author
    guild.members[owner.id] = owner
    guild.members["bob-uuid"] = User(id="bob-uuid", name="Bobby Tables")
    return guild


@pytest.fixture
def group_channel(guild):
    """The general channel of the test guild."""
    return guild.channels["chan-general"]


@pytest.fixture
def dm_channel(author):
    """A one-to-one channel with the author."""
    return Channel(id=author.id, name=author.name, is_dm=True)


@pytest.fixture
def make_message(author, group_channel):
    """Factory for incoming messages (group channel by default)."""
    counter = {"n": 0}

    def _make(content, channel=None, user=None):
        counter["n"] += 1
        return MessageContext(
            id=f"msg-{counter['n']}",
            content=content,
            author=user or author,
            channel=channel or group_channel,
            timestamp=1700000000000 + counter["n"],
        )
    return _make


@pytest.fixture
def sample_handler():
    """A simple command handler for testing."""
    def handler(context):
        return f"Handled {context.target.name} with args: {context.args}"
    return handler


@pytest.fixture
def ping_command():
    """A command with no arguments."""
    return BotCommand(name="ping", description="Ping the bot", handler=lambda ctx: "pong")


@pytest.fixture
def clean_env():
    """Clean environment for testing - removes relevant env vars."""
    env_vars = [
        "BOT_PREFIX",
        "BOT_OWNER_ID",
        "REPLACER_OPEN",
        "REPLACER_CLOSE",
        "LOG_LEVEL",
        "LOG_SENSITIVE",
        "SIGNAL_DAEMON_HOST",
        "SIGNAL_DAEMON_PORT",
    ]
    original = {k: os.environ.get(k) for k in env_vars}
    for k in env_vars:
        os.environ.pop(k, None)
    yield
    for k, v in original.items():
        if v is not None:
            os.environ[k] = v
        else:
            os.environ.pop(k, None)
