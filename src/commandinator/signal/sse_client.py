"""Signal transport over the signal-cli daemon.

Two communication channels:
- SSE (GET /api/v1/events) - Real-time message reception
- JSON-RPC (POST /api/v1/rpc) - Sending and deleting messages

Incoming envelopes are converted into MessageContext objects. Signal
marks @mentions with a U+FFFC placeholder plus a side list of mentions;
these are rendered as <@uuid> markup so the router sees the same mention
syntax as on any other network, and converted back when sending.
"""

import json
import os
import re
import threading
import time
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import requests
import sseclient

from ..bot.types import Channel, Guild, MessageContext, OutgoingMessage, SentMessage, User
from ..logging import anonymize_id, get_logger

logger = get_logger(__name__)

# Unicode object replacement character used by Signal for @mentions
MENTION_PLACEHOLDER = "\uFFFC"

MENTION_MARKUP = re.compile(r'<@!?([^>\s]+)>')


def render_mentions(text: str, mentions: List[Dict[str, Any]]) -> str:
    """Replace Signal mention placeholders with <@uuid> markup.

    Args:
        text: Raw message text
        mentions: Mention dicts with 'start', 'length' and 'uuid' keys

    Returns:
        Text with every mention rendered as <@uuid>
    """
    if not text or not mentions:
        return text or ""

    # Reverse order keeps earlier offsets valid
    ordered = sorted(mentions, key=lambda m: m.get('start', 0), reverse=True)

    result = text
    for mention in ordered:
        uuid = mention.get('uuid')
        if not uuid:
            continue
        start = mention.get('start', 0)
        length = mention.get('length', 1)
        result = f"{result[:start]}<@{uuid}>{result[start + length:]}"

    return result


def extract_mentions(text: str) -> Tuple[str, List[str]]:
    """Turn <@uuid> markup back into placeholders for sending.

    Returns:
        Tuple of (text with placeholders, signal-cli "start:length:uuid" strings)
    """
    mentions = []
    parts = []
    cursor = 0
    length = 0

    for match in MENTION_MARKUP.finditer(text):
        parts.append(text[cursor:match.start()])
        length += match.start() - cursor
        mentions.append(f"{length}:1:{match.group(1)}")
        parts.append(MENTION_PLACEHOLDER)
        length += 1
        cursor = match.end()

    parts.append(text[cursor:])
    return "".join(parts), mentions


def render_embed(embed: Dict[str, Any]) -> str:
    """Flatten an embed dict (title, description, fields, footer) into text."""
    lines = []
    if embed.get('title'):
        lines.append(embed['title'])
    if embed.get('description'):
        lines.append(embed['description'])
    for item in embed.get('fields', []):
        lines.append(f"{item.get('name', '')}: {item.get('value', '')}")
    footer = embed.get('footer')
    if footer:
        lines.append(footer.get('text', '') if isinstance(footer, dict) else str(footer))
    return "\n".join(lines)


class SignalTransport:
    """Transport for signal-cli daemon with SSE streaming.

    Channel IDs are group IDs for group chats and the other party's UUID
    for one-to-one chats.

    Example:
        transport = SignalTransport("+1234567890", "signal-daemon", 8080)
        transport.add_handler(lambda msg: print(msg.content))
        transport.start_streaming()
    """

    def __init__(self, phone_number: str, host: str = None, port: int = None):
        """Initialize the transport.

        Args:
            phone_number: The registered Signal phone number
            host: Daemon host (default: from SIGNAL_DAEMON_HOST env or localhost)
            port: Daemon port (default: from SIGNAL_DAEMON_PORT env or 8080)
        """
        self.phone_number = phone_number
        self.host = host or os.getenv("SIGNAL_DAEMON_HOST", "localhost")
        self.port = port or int(os.getenv("SIGNAL_DAEMON_PORT", "8080"))
        self.base_url = f"http://{self.host}:{self.port}/api/v1/rpc"
        self._handlers: List[Callable[[MessageContext], None]] = []
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._request_id = 0
        self._rpc_lock = threading.Lock()
        self._cache_lock = threading.Lock()

        self._own_id: Optional[str] = None
        self._users: Dict[str, User] = {}
        self._guilds: Dict[str, Guild] = {}
        self._dm_channels: Dict[str, Channel] = {}

    # =========================================================================
    # JSON-RPC
    # =========================================================================

    def _call_rpc(self, method: str, params: dict = None) -> Any:
        """Make JSON-RPC 2.0 call to signal-cli daemon.

        Raises:
            Exception: If the RPC call fails
        """
        with self._rpc_lock:
            self._request_id += 1
            request_id = self._request_id

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "id": request_id
        }
        if params:
            payload["params"] = params

        response = requests.post(self.base_url, json=payload, timeout=30)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"]
            raise Exception(f"RPC error {error.get('code')}: {error.get('message')}")
        return result.get("result")

    def is_ready(self) -> bool:
        """Check if the daemon is accessible, refreshing the group index."""
        try:
            self.refresh_groups()
            return True
        except Exception as e:
            logger.debug(f"Daemon not accessible: {e}")
            return False

    def refresh_groups(self) -> List[Guild]:
        """Reload the group index from the daemon."""
        groups = self._call_rpc("listGroups", {"account": self.phone_number}) or []
        with self._cache_lock:
            for group in groups:
                guild = self._get_or_create_guild(group.get('id'), group.get('name') or "")
                for member in group.get('members', []):
                    uuid = member.get('uuid')
                    if not uuid:
                        continue
                    if member.get('number') == self.phone_number:
                        self._own_id = uuid
                    guild.members.setdefault(uuid, self._users.setdefault(uuid, User(id=uuid)))
            return list(self._guilds.values())

    @property
    def own_id(self) -> Optional[str]:
        """The bot's UUID, as it appears in mentions."""
        return self._own_id

    @property
    def users(self) -> Dict[str, User]:
        """Users seen so far, keyed by UUID."""
        return self._users

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        """Get a known group or one-to-one channel."""
        with self._cache_lock:
            guild = self._guilds.get(channel_id)
            if guild is not None:
                return guild.channels.get(channel_id)
            return self._dm_channels.get(channel_id)

    def _target_params(self, channel_id: str) -> Dict[str, Any]:
        channel = self.get_channel(channel_id)
        if channel is None:
            raise LookupError(f"Unknown channel {anonymize_id(channel_id)}")
        if channel.is_dm:
            return {"recipient": [channel.id]}
        return {"groupId": channel.id}

    def send(self, channel_id: str, message: OutgoingMessage) -> SentMessage:
        """Send a message.

        Raises:
            LookupError: If the channel has never been seen
            Exception: If the RPC call fails
        """
        parts = [part for part in (message.content, render_embed(message.embed) if message.embed else None) if part]
        text, mentions = extract_mentions("\n".join(parts))

        params = {"account": self.phone_number, "message": text}
        params.update(self._target_params(channel_id))
        if message.file:
            params["attachments"] = [message.file]
        if mentions:
            params["mention"] = mentions

        result = self._call_rpc("send", params) or {}
        timestamp = result.get("timestamp", 0)
        logger.debug(f"Message sent to {anonymize_id(channel_id)}")
        return SentMessage(id=str(timestamp), channel_id=channel_id, content=text, timestamp=timestamp)

    def delete(self, message: SentMessage) -> None:
        """Delete a sent message for everyone."""
        params = {"account": self.phone_number, "targetTimestamp": message.timestamp or int(message.id)}
        params.update(self._target_params(message.channel_id))
        self._call_rpc("remoteDelete", params)
        logger.debug(f"Message {message.id} deleted")

    # =========================================================================
    # Inbound
    # =========================================================================

    def add_handler(self, handler: Callable[[MessageContext], None]) -> None:
        """Add a handler for incoming messages."""
        self._handlers.append(handler)

    def _get_or_create_guild(self, group_id: str, name: str) -> Guild:
        # Caller holds the cache lock
        guild = self._guilds.get(group_id)
        if guild is None:
            guild = Guild(id=group_id, name=name)
            guild.channels[group_id] = Channel(id=group_id, name=name, guild=guild)
            self._guilds[group_id] = guild
        elif name and not guild.name:
            guild.name = name
            guild.channels[group_id].name = name
        return guild

    def _parse_envelope(self, envelope: dict) -> Optional[MessageContext]:
        """Parse a signal-cli envelope into a MessageContext.

        Returns:
            MessageContext, or None for envelopes without text
        """
        try:
            source = envelope.get("source")
            if isinstance(source, dict):
                source_uuid = envelope.get("sourceUuid") or source.get("uuid")
                source_number = envelope.get("sourceNumber") or source.get("number")
            else:
                source_uuid = envelope.get("sourceUuid") or source
                source_number = envelope.get("sourceNumber")

            data_message = envelope.get("dataMessage") or {}
            text = data_message.get("message")
            if not text:
                return None

            author_id = source_uuid or source_number
            group_info = data_message.get("groupInfo") or {}
            group_id = group_info.get("groupId")

            with self._cache_lock:
                author = self._users.setdefault(author_id, User(id=author_id))
                if envelope.get("sourceName"):
                    author.name = envelope["sourceName"]

                if group_id:
                    guild = self._get_or_create_guild(group_id, group_info.get("groupName") or group_info.get("name") or "")
                    guild.members[author_id] = author
                    channel = guild.channels[group_id]
                else:
                    channel = self._dm_channels.setdefault(
                        author_id, Channel(id=author_id, name=author.name, is_dm=True)
                    )

            timestamp = envelope.get("timestamp", 0)
            mentions = data_message.get("mentions") or []

            return MessageContext(
                id=str(timestamp),
                content=render_mentions(text, mentions),
                author=author,
                channel=channel,
                timestamp=timestamp,
                mentions=mentions,
                attachments=data_message.get("attachments") or [],
                raw=envelope,
            )
        except Exception as e:
            logger.warning(f"Failed to parse envelope: {e}")
            return None

    def stream_messages(self) -> Generator[MessageContext, None, None]:
        """Stream messages via SSE.

        Yields:
            MessageContext objects as they arrive
        """
        sse_url = f"http://{self.host}:{self.port}/api/v1/events"
        logger.info(f"Connecting to SSE stream at {self.host}:{self.port}")

        response = requests.get(sse_url, stream=True, timeout=None)
        try:
            response.raise_for_status()

            client = sseclient.SSEClient(response)
            logger.info("SSE connected, waiting for messages...")

            for event in client.events():
                if not self._running:
                    break
                if not event.data:
                    continue
                try:
                    data = json.loads(event.data)
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to decode SSE event: {e}")
                    continue

                msg = self._parse_envelope(data.get("envelope", data))
                if msg:
                    yield msg
        finally:
            response.close()

    def _dispatch(self, msg: MessageContext) -> None:
        for handler in self._handlers:
            try:
                handler(msg)
            except Exception as e:
                logger.debug(f"Handler error: {e}")

    def start_streaming(self) -> None:
        """Start SSE streaming in a background thread."""
        if self._running:
            return

        self._running = True

        def stream_loop():
            reconnect_delay = 1
            while self._running:
                try:
                    for msg in self.stream_messages():
                        if not self._running:
                            break
                        self._dispatch(msg)
                    reconnect_delay = 1
                except Exception as e:
                    logger.error(f"SSE error: {e}")
                    if self._running:
                        time.sleep(reconnect_delay)
                        reconnect_delay = min(reconnect_delay * 2, 60)

        self._thread = threading.Thread(target=stream_loop, daemon=True, name="signal-sse")
        self._thread.start()
        logger.info("SSE streaming started")

    def stop_streaming(self) -> None:
        """Stop SSE streaming."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5)
        logger.info("SSE streaming stopped")
