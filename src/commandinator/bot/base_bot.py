"""Bot runner tying a transport to a CommandRouter."""

import threading
import time
from typing import Dict, Iterable, List, Optional, Tuple

from .command_router import CommandRouter, Middleware
from .transport import ReactionBinder, Transport
from .types import (
    Argument,
    BotCommand,
    CommandContext,
    HandleResult,
    MessageContext,
    OutgoingMessage,
    Replacer,
)
from ..errors import IgnoredError, InputError
from ..logging import get_logger

logger = get_logger(__name__)

# Dedup cache is flushed past this many entries
PROCESSED_CACHE_LIMIT = 1000


class CommandinatorBot:
    """Runs a CommandRouter on top of a transport.

    Provides:
    - Message deduplication and self-message filtering
    - Replies for input errors, logging for defects
    - Built-in help and prefix commands
    - Blocking run loop
    """

    def __init__(
        self,
        transport: Transport,
        commands: Iterable[BotCommand] = None,
        replacers: Iterable[Replacer] = None,
        prefix: str = None,
        owner_id: str = None,
        replacer_braces: Tuple[str, str] = None,
        channel_prefixes: Dict[str, str] = None,
        reaction_handler: ReactionBinder = None,
        middleware: Iterable[Middleware] = None,
        name: str = "Commandinator",
    ):
        """Initialize the bot.

        Args:
            transport: Connected (or connectable) chat transport
            commands: Commands to load
            replacers: Replacers to load
            prefix: Command prefix (default: from BOT_PREFIX env or "!")
            owner_id: Owner user ID (default: from BOT_OWNER_ID env)
            replacer_braces: (open, close) replacer markers
            channel_prefixes: Initial per-conversation prefix overrides
            reaction_handler: Binder for reaction interfaces
            middleware: Checks run before every handler
            name: Display name used in help text
        """
        self.name = name
        self.transport = transport
        self.router = CommandRouter(
            transport,
            commands=commands,
            replacers=replacers,
            prefix=prefix,
            replacer_braces=replacer_braces,
            channel_prefixes=channel_prefixes,
            owner_id=owner_id,
            reaction_handler=reaction_handler,
            bot=self,
        )
        for check in middleware or []:
            self.router.add_middleware(check)

        self._running = False
        self._started = False
        self._processed_messages: set = set()
        self._processed_lock = threading.Lock()

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Register built-ins and start receiving messages."""
        if self._started:
            return

        self._register_builtin_commands()
        self.transport.add_handler(self.handle_message)
        self.transport.start_streaming()
        self._started = True
        self._running = True
        logger.info(f"{self.name} is now running.")

    def run(self) -> None:
        """Run the bot until interrupted or stopped."""
        logger.info(f"Starting {self.name}...")

        if not self._wait_for_transport():
            logger.error("Transport did not become ready")
            return

        self.start()

        try:
            while self._running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Received interrupt, shutting down...")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the bot and drop pending awaits."""
        self._running = False
        self.transport.stop_streaming()
        self.router.close()
        logger.info(f"{self.name} stopped.")

    def _wait_for_transport(self, max_attempts: int = 30, delay: float = 2.0) -> bool:
        """Wait for the transport to be ready.

        Args:
            max_attempts: Maximum connection attempts
            delay: Seconds between attempts

        Returns:
            True if ready, False if timed out
        """
        for attempt in range(max_attempts):
            if self.transport.is_ready():
                logger.info("Transport ready")
                return True

            logger.info(f"Waiting for transport... (attempt {attempt + 1}/{max_attempts})")
            time.sleep(delay)

        return False

    # ==================== Message Handling ====================

    def handle_message(self, message: MessageContext) -> Optional[HandleResult]:
        """Handle an incoming message.

        Input errors are answered in the message's channel. Defects are
        logged with their traceback and re-raised to the transport.
        """
        msg_key = (message.channel.id, message.id)
        with self._processed_lock:
            if msg_key in self._processed_messages:
                return None
            self._processed_messages.add(msg_key)
            if len(self._processed_messages) > PROCESSED_CACHE_LIMIT:
                self._processed_messages.clear()

        if message.author.bot or message.author.id == self.transport.own_id:
            return None

        try:
            return self.router.handle(message)
        except InputError as e:
            logger.debug(f"Input error ({e.code}) in {message.channel.id}")
            self._reply(message, e.format())
        except IgnoredError:
            logger.debug(f"Dispatch ignored in {message.channel.id}")
        except Exception:
            logger.exception(f"Failed to handle message {message.id}")
            raise
        return None

    def _reply(self, message: MessageContext, text: str) -> None:
        try:
            self.transport.send(message.channel.id, OutgoingMessage(content=text))
        except Exception as e:
            logger.error(f"Failed to send error reply: {e}")

    # ==================== Built-in Commands ====================

    def _register_builtin_commands(self) -> None:
        builtins = [
            BotCommand(
                name="help",
                description="Show available commands",
                handler=self._handle_help_command,
                args=[Argument(name="command")],
            ),
            BotCommand(
                name="prefix",
                description="Show or change the command prefix here",
                handler=self._handle_prefix_command,
                args=[Argument(name="prefix")],
                guild_only=True,
            ),
        ]
        for cmd in builtins:
            if not self.router.get_command(cmd.name):
                self.router.register_command(cmd)

    def _handle_help_command(self, context: CommandContext) -> str:
        """Handle the help command."""
        is_owner = context.author.id == self.router.owner_id

        if context.args:
            command = self.router.get_command(context.args[0])
            if not command or (command.restricted and not is_owner):
                raise InputError(f"Unknown command: {context.args[0]}", "Use help to list commands.", "unknown")
            usage = command.usage or self.router.format_usage(command)
            return f"{self.router.get_prefix(context.channel)}{usage}\n{command.description}"

        help_text = f"📢 {self.name} Commands\n\n"
        help_text += self.router.get_help_text(include_restricted=is_owner)
        return help_text

    def _handle_prefix_command(self, context: CommandContext) -> str:
        """Handle the prefix command."""
        current = self.router.get_prefix(context.channel)
        if not context.args:
            return f"The prefix here is: {current}"

        if context.author.id != self.router.owner_id:
            raise InputError("Only the bot owner can change the prefix", "", "restricted")

        new_prefix = context.args[0].strip()
        if not new_prefix:
            raise InputError("The prefix cannot be empty", "Supply at least one visible character.", "arguments")
        self.router.set_prefix(context.channel.scope_id, new_prefix)
        logger.info(f"Prefix changed for {context.channel.scope_id}")
        return f"✅ Prefix set to: {new_prefix}"

    # ==================== Utility Methods ====================

    def send_message(self, channel_id: str, content: str) -> bool:
        """Send a plain message.

        Returns:
            True if sent successfully
        """
        try:
            self.transport.send(channel_id, OutgoingMessage(content=content))
            return True
        except Exception as e:
            logger.error(f"Failed to send message: {e}")
            return False

    def list_commands(self) -> List[BotCommand]:
        """Get the registered commands sorted by name."""
        return [cmd for _, cmd in sorted(self.router.get_commands().items())]
