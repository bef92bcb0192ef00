"""Bot framework for Commandinator.

Provides the command router, awaits, argument parsing and the bot runner.
"""

from .types import (
    Argument,
    ArgType,
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
    ReplacerContext,
    ResultOptions,
    ResultRecord,
    SentMessage,
    User,
)
from .arguments import EntityResolver, parse_args, parse_number
from .awaits import Await, AwaitRegistry
from .replacers import run_replacers
from .command_router import CommandRouter
from .base_bot import CommandinatorBot
from .transport import ReactionBinder, Transport

__all__ = [
    "Argument",
    "ArgType",
    "BotCommand",
    "Channel",
    "CommandContext",
    "CommandResult",
    "Guild",
    "HandleResult",
    "MessageContext",
    "Normalized",
    "OutgoingMessage",
    "Replacer",
    "ReplacerContext",
    "ResultOptions",
    "ResultRecord",
    "SentMessage",
    "User",
    "EntityResolver",
    "parse_args",
    "parse_number",
    "Await",
    "AwaitRegistry",
    "run_replacers",
    "CommandRouter",
    "CommandinatorBot",
    "ReactionBinder",
    "Transport",
]
