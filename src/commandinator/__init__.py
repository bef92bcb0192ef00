"""Commandinator - command routing engine for chat bots.

This package provides:
- Command, await and inline replacer routing
- Delimiter-driven argument parsing with typed coercion
- Multi-channel result fanout with follow-up awaits and timed deletes
- A Signal transport (SSE streaming + JSON-RPC)
- CLI scaffolding (Click-based)
- Privacy-safe logging
"""

__version__ = "0.1.0"

from .logging import setup_logging, get_logger

from .errors import (
    AwaitStateError,
    CommandinatorError,
    ConfigurationError,
    IgnoredError,
    InputError,
)

# Bot framework
from .bot import (
    Argument,
    ArgType,
    Await,
    BotCommand,
    CommandContext,
    CommandinatorBot,
    CommandResult,
    CommandRouter,
    MessageContext,
    Replacer,
    ResultOptions,
)

# Transports
from .signal import SignalTransport

__all__ = [
    "__version__",
    "setup_logging",
    "get_logger",
    # Errors
    "AwaitStateError",
    "CommandinatorError",
    "ConfigurationError",
    "IgnoredError",
    "InputError",
    # Bot framework
    "Argument",
    "ArgType",
    "Await",
    "BotCommand",
    "CommandContext",
    "CommandinatorBot",
    "CommandResult",
    "CommandRouter",
    "MessageContext",
    "Replacer",
    "ResultOptions",
    # Transports
    "SignalTransport",
]
