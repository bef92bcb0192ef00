"""Command routing for Commandinator bots."""

import os
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .arguments import EntityResolver, check_arg_order, parse_args
from .awaits import Await, AwaitRegistry
from .replacers import run_replacers
from .transport import ReactionBinder, Transport
from .types import (
    BotCommand,
    Channel,
    CommandContext,
    CommandResult,
    Guild,
    HandleResult,
    MessageContext,
    Normalized,
    OutgoingMessage,
    Replacer,
    ResultOptions,
    ResultRecord,
    SentMessage,
    count_mandatory,
)
from ..errors import ConfigurationError, InputError
from ..logging import get_logger

logger = get_logger(__name__)

Target = Union[BotCommand, Await]
Middleware = Callable[[MessageContext, Any, Target], Any]


def _settle(value: Any) -> Any:
    """Wait for a handler that answered with a Future."""
    if isinstance(value, Future):
        return value.result()
    return value


class CommandRouter:
    """Routes incoming messages to commands and awaits.

    Handles:
    - Replacer substitution and prefix / @mention stripping
    - Await matching
    - Owner-only and guild-only checks, middleware
    - Argument parsing
    - Result fanout: multi-channel sends, follow-up awaits,
      reaction interfaces, timed deletes
    """

    DEFAULT_PREFIX = "!"
    DEFAULT_BRACE = "|"

    def __init__(
        self,
        transport: Transport,
        commands: Iterable[BotCommand] = None,
        replacers: Iterable[Replacer] = None,
        prefix: str = None,
        replacer_braces: Tuple[str, str] = None,
        channel_prefixes: Dict[str, str] = None,
        owner_id: str = None,
        resolver: EntityResolver = None,
        reaction_handler: ReactionBinder = None,
        bot: Any = None,
        max_workers: int = 8,
    ):
        """Initialize the command router.

        Args:
            transport: Transport used to send and delete responses
            commands: Commands to load
            replacers: Replacers to load
            prefix: Command prefix (default: from BOT_PREFIX env or "!")
            replacer_braces: (open, close) replacer markers (default: from REPLACER_OPEN/REPLACER_CLOSE env or "|")
            channel_prefixes: Per-conversation prefix overrides keyed by scope ID
            owner_id: User ID allowed to run restricted commands (default: from BOT_OWNER_ID env)
            resolver: Resolver for user/channel arguments
            reaction_handler: Binder for reaction interfaces (disabled if None)
            bot: Bot runner handed to handlers
            max_workers: Threads used to fan out responses
        """
        self._transport = transport
        self.prefix = prefix or os.getenv("BOT_PREFIX", self.DEFAULT_PREFIX)
        self.replacer_braces = replacer_braces or (
            os.getenv("REPLACER_OPEN", self.DEFAULT_BRACE),
            os.getenv("REPLACER_CLOSE", self.DEFAULT_BRACE),
        )
        self.owner_id = owner_id or os.getenv("BOT_OWNER_ID") or None
        self.reaction_handler = reaction_handler
        self.bot = bot

        self._channel_prefixes: Dict[str, str] = dict(channel_prefixes or {})
        self._commands: Dict[str, BotCommand] = {}
        self._aliases: Dict[str, str] = {}
        self._replacers: Dict[str, Replacer] = {}
        self._middleware: List[Middleware] = []
        self._resolver = resolver or EntityResolver(getattr(transport, "users", None))
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fanout")

        self.awaits = AwaitRegistry()

        if replacers and self.replacer_braces[0].startswith(self.prefix):
            logger.warning("Replacer opening brace starts with the command prefix; this could lead to some issues")

        self.load_commands(commands or [])
        self.load_replacers(replacers or [])

    # ==================== Registration ====================

    def register_command(self, command: BotCommand) -> None:
        """Register a command handler.

        Argument lists where a mandatory argument follows an optional one
        are loaded but logged as invalid.

        Args:
            command: BotCommand to register
        """
        if not isinstance(command, BotCommand):
            raise TypeError(f"Supplied command is not a BotCommand: {command!r}")

        if command.args:
            if command.args[-1].delimiter != " ":
                logger.info(f"Command {command.name}'s last argument unnecessarily has a delimiter")
            if not check_arg_order(command.args):
                logger.warning(
                    f"Command {command.name} has invalid argument mandates; "
                    "all arguments up to the last mandatory one must be mandatory"
                )

        self._commands[command.name] = command
        for alias in command.aliases:
            self._aliases[alias] = command.name
        logger.debug(f"Registered command: {command.name}")

    def load_commands(self, commands: Union[BotCommand, Iterable[BotCommand]]) -> None:
        """Register a command or a list of commands."""
        if isinstance(commands, BotCommand):
            commands = [commands]
        for command in commands:
            self.register_command(command)

    def unregister_command(self, name: str) -> None:
        """Unregister a command and its aliases."""
        command = self._commands.pop(name.lower(), None)
        if command:
            for alias in command.aliases:
                if self._aliases.get(alias) == command.name:
                    del self._aliases[alias]

    def get_commands(self) -> Dict[str, BotCommand]:
        """Get all registered commands."""
        return self._commands.copy()

    def get_command(self, name: str) -> Optional[BotCommand]:
        """Get a command by name or alias."""
        name = name.lower()
        return self._commands.get(name) or self._commands.get(self._aliases.get(name))

    def register_replacer(self, replacer: Replacer) -> None:
        """Register an inline replacer."""
        if not isinstance(replacer, Replacer):
            raise TypeError(f"Supplied replacer is not a Replacer: {replacer!r}")
        self._replacers[replacer.key] = replacer
        logger.debug(f"Registered replacer: {replacer.key}")

    def load_replacers(self, replacers: Union[Replacer, Iterable[Replacer]]) -> None:
        """Register a replacer or a list of replacers."""
        if isinstance(replacers, Replacer):
            replacers = [replacers]
        for replacer in replacers:
            self.register_replacer(replacer)

    def get_replacer(self, key: str) -> Optional[Replacer]:
        """Get a replacer by key."""
        return self._replacers.get(key.lower())

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a check run before every handler.

        Middleware is called as middleware(message, member, target) in
        registration order and aborts the dispatch by raising.
        """
        self._middleware.append(middleware)

    def add_awaits(
        self,
        awaits: Union[Await, List[Await]],
        fallback_channel: str = None,
        fallback_user: str = None,
        trigger_response: SentMessage = None,
    ) -> List[Await]:
        """Arm awaits outside of a command result."""
        return self.awaits.register(awaits, fallback_channel, fallback_user, trigger_response)

    # ==================== Prefixes ====================

    def set_prefix(self, scope_id: str, prefix: str) -> None:
        """Override the prefix for one conversation.

        Raises:
            ValueError: If the prefix is empty or whitespace
        """
        if not prefix or not prefix.strip():
            raise ValueError("Prefix must not be empty")
        self._channel_prefixes[scope_id] = prefix

    def clear_prefix(self, scope_id: str) -> None:
        """Remove a conversation's prefix override."""
        self._channel_prefixes.pop(scope_id, None)

    def get_prefix(self, channel: Channel) -> str:
        """Get the prefix in effect for a channel."""
        scope_id = channel.scope_id
        if scope_id is not None and scope_id in self._channel_prefixes:
            return self._channel_prefixes[scope_id]
        return self.prefix

    # ==================== Normalizing ====================

    def run_replacers(self, scope: Optional[Guild], content: str) -> str:
        """Substitute replacer spans in message content."""
        if not self._replacers:
            return content
        open_brace, close_brace = self.replacer_braces
        return run_replacers(content, open_brace, close_brace, self.get_replacer, self._resolver, scope)

    def _prefix_pattern(self, prefix: str) -> re.Pattern:
        alternatives = []
        own_id = self._transport.own_id
        if own_id:
            alternatives.append(f"<@!?{re.escape(own_id)}> ?")
        alternatives.append(re.escape(prefix))
        return re.compile(f"^(?:{'|'.join(alternatives)})(.+?)$", re.DOTALL)

    def normalize(self, message: MessageContext) -> Normalized:
        """Run replacers, then strip the prefix or a leading bot mention.

        One-to-one messages always count as prefixed.
        """
        post_replacers = self.run_replacers(message.guild, message.content)
        match = self._prefix_pattern(self.get_prefix(message.channel)).match(post_replacers)

        return Normalized(
            content=match.group(1) if match else post_replacers,
            prefixed=bool(match) or message.is_dm,
        )

    # ==================== Dispatch ====================

    def handle(self, message: MessageContext) -> Optional[HandleResult]:
        """Route a message to an await or a command and deliver the results.

        Args:
            message: Incoming message

        Returns:
            HandleResult, or None if the message was not meant for the bot

        Raises:
            InputError: Invalid arguments or missing permission
            IgnoredError: A middleware silently aborted the dispatch
        """
        normalized = self.normalize(message)
        awaited = self.awaits.lookup(message, normalized)

        if awaited is None and not normalized.prefixed:
            return None

        raw_keyword = normalized.content.split(" ", 1)[0]
        target = awaited or self.get_command(raw_keyword)
        if target is None:
            return None

        self._validate(message, target)

        member = message.author
        if message.guild is not None:
            member = message.guild.members.get(message.author.id, message.author)
        for middleware in self._middleware:
            _settle(middleware(message, member, target))

        args = []
        if target.args:
            start = 0 if awaited is not None and not awaited.should_shift else len(raw_keyword) + 1
            args = parse_args(target.args, normalized.content[start:], self._resolver, message.guild)
            if args is None or len(args) < count_mandatory(target.args):
                raise InputError("Invalid arguments", "Reference the help menu.", "arguments")

        outcome = _settle(target.handler(CommandContext(
            message=message,
            target=target,
            args=args,
            bot=self.bot,
            trigger_response=target.trigger_response if awaited is not None else None,
        )))

        return self._deliver_results(message, target, awaited, outcome)

    def _validate(self, message: MessageContext, target: Target) -> None:
        if getattr(target, "restricted", False) and message.author.id != self.owner_id:
            raise InputError(
                "This command is either temporarily disabled, or restricted",
                "Check the bot's announcement feed",
                "restricted",
            )
        if getattr(target, "guild_only", False) and message.is_dm:
            raise InputError(
                "This command has been disabled outside of group channels",
                "Try using it in a group channel",
                "nonguild",
            )
        if not callable(target.handler):
            name = target.key if isinstance(target, Await) else target.name
            raise TypeError(f"Handler is not callable: {name}")

    def _deliver_results(
        self,
        message: MessageContext,
        target: Target,
        awaited: Optional[Await],
        outcome: Any,
    ) -> HandleResult:
        outcomes = outcome if isinstance(outcome, list) else [outcome]

        pending = []
        for item in outcomes:
            result = CommandResult.coerce(item)
            if result is None:
                continue

            options = replace(result.options, channels=result.options.channels or [message.channel.id])
            outgoing = result.to_outgoing()
            futures = [
                self._executor.submit(self._deliver, message, channel_id, outgoing, options)
                for channel_id in options.channels
            ]
            pending.append((options, futures))

        records = []
        defect = None
        for options, futures in pending:
            responses = []
            for future in futures:
                try:
                    responses.append(future.result())
                except Exception as e:
                    defect = defect or e
                    responses.append(e)
            records.append(ResultRecord(options=options, responses=responses))

        if awaited is not None:
            if awaited.refresh_on_use:
                self.awaits.refresh(awaited)
            else:
                self.awaits.clear(awaited)

        if defect is not None:
            raise defect

        return HandleResult(target=target, results=records)

    def _deliver(
        self,
        message: MessageContext,
        channel_id: str,
        outgoing: OutgoingMessage,
        options: ResultOptions,
    ) -> Any:
        """Send to one channel and set up whatever the result asked for."""
        try:
            response = self._transport.send(channel_id, outgoing)
        except Exception as e:
            logger.error(f"Failed to send response to {channel_id}: {e}")
            return e

        if options.awaits:
            self.awaits.register(
                options.awaits,
                fallback_channel=channel_id,
                fallback_user=message.author.id,
                trigger_response=response,
            )

        if options.react_interface is not None:
            if self.reaction_handler is None:
                raise ConfigurationError(
                    "The reaction handler isn't enabled; pass reaction_handler to use reaction interfaces"
                )
            self.reaction_handler.bind_interface(response, options.react_interface, message.author.id)

        if options.delete_after:
            if isinstance(options.delete_after, bool) or not isinstance(options.delete_after, (int, float)):
                raise TypeError(f"Supplied delete_after delay is not a number: {options.delete_after!r}")
            self._schedule_delete(response, options.delete_after)

        return response

    def _schedule_delete(self, response: SentMessage, delay: float) -> threading.Timer:
        def delete():
            try:
                self._transport.delete(response)
            except Exception as e:
                # Already gone, most likely
                logger.debug(f"Ignoring failed delete of response {response.id}: {e}")

        timer = threading.Timer(delay, delete)
        timer.daemon = True
        timer.start()
        return timer

    # ==================== Help ====================

    @staticmethod
    def format_usage(command: BotCommand) -> str:
        """Build a usage line from a command's arguments."""
        parts = [command.name]
        for arg in command.args:
            parts.append(f"<{arg.name}>" if arg.mandatory else f"[{arg.name}]")
        return " ".join(parts)

    def get_help_text(self, include_restricted: bool = False) -> str:
        """Generate help text for all commands.

        Args:
            include_restricted: Whether to include owner-only commands

        Returns:
            Formatted help text
        """
        lines = []

        for name, cmd in sorted(self._commands.items()):
            if cmd.restricted and not include_restricted:
                continue

            usage = cmd.usage or self.format_usage(cmd)
            line = f"{self.prefix}{usage} - {cmd.description}"
            if cmd.aliases:
                line += f" (aliases: {', '.join(cmd.aliases)})"
            if cmd.restricted:
                line += " (owner)"
            lines.append(line)

        return "\n".join(lines)

    def close(self) -> None:
        """Drop pending awaits and stop the fanout pool."""
        self.awaits.clear_all()
        self._executor.shutdown(wait=False)
