"""Type definitions for the bot framework."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple


class ArgType(str, Enum):
    """Value type an argument is coerced to."""
    STRING = "string"
    NUMBER = "number"
    USER = "user"
    CHANNEL = "channel"


@dataclass(frozen=True)
class Argument:
    """Definition of one positional argument.

    Attributes:
        name: Argument name (used in help/usage text)
        mandatory: Whether the argument must be supplied
        delimiter: Text separating this argument from the next one
        type: Type the raw text is coerced to
    """
    name: str
    mandatory: bool = False
    delimiter: str = " "
    type: ArgType = ArgType.STRING

    def __post_init__(self):
        object.__setattr__(self, "type", ArgType(self.type))

    @classmethod
    def coerce(cls, value: Any) -> "Argument":
        """Build an Argument from an Argument, a dict or a bare name."""
        if isinstance(value, Argument):
            return value
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, dict):
            return cls(**value)
        raise TypeError(f"Supplied argument is not an Argument: {value!r}")


def build_args(args: Optional[Iterable[Any]]) -> Tuple[Argument, ...]:
    """Normalize a list of argument definitions."""
    return tuple(Argument.coerce(arg) for arg in args or ())


def count_mandatory(args: Sequence[Argument]) -> int:
    """Number of mandatory arguments in a definition list."""
    return sum(1 for arg in args if arg.mandatory)


@dataclass
class User:
    """A chat user."""
    id: str
    name: str = ""
    bot: bool = False


@dataclass
class Guild:
    """A group of channels and members (a server, or a Signal group).

    Attributes:
        id: Guild ID
        name: Display name
        members: Member index keyed by user ID
        channels: Channel index keyed by channel ID
    """
    id: str
    name: str = ""
    members: Dict[str, User] = field(default_factory=dict)
    channels: Dict[str, "Channel"] = field(default_factory=dict)


@dataclass
class Channel:
    """A conversation messages are received from and sent to."""
    id: str
    name: str = ""
    guild: Optional[Guild] = field(default=None, repr=False)
    is_dm: bool = False

    @property
    def scope_id(self) -> Optional[str]:
        """Key for per-conversation settings (None for one-to-one channels)."""
        if self.is_dm:
            return None
        return self.guild.id if self.guild else self.id


@dataclass
class MessageContext:
    """Context for an incoming message.

    Attributes:
        id: Message ID (unique within its channel)
        content: Message text, with mentions rendered as <@user_id>
        author: Sender
        channel: Channel the message was sent in
        timestamp: Message timestamp (milliseconds since epoch)
        mentions: Raw mention data from the transport
        attachments: List of attachment info dicts
        raw: Raw transport payload
    """
    id: str
    content: str
    author: User
    channel: Channel
    timestamp: int = 0
    mentions: List[Dict[str, Any]] = field(default_factory=list)
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def is_dm(self) -> bool:
        """Check if this is a one-to-one message."""
        return self.channel.is_dm

    @property
    def guild(self) -> Optional[Guild]:
        """Shortcut to channel.guild."""
        return self.channel.guild


@dataclass
class OutgoingMessage:
    """Payload handed to a transport for sending."""
    content: Optional[str] = None
    embed: Optional[Dict[str, Any]] = None
    file: Optional[str] = None


@dataclass
class SentMessage:
    """A message the transport has delivered."""
    id: str
    channel_id: str
    content: Optional[str] = None
    timestamp: int = 0


@dataclass
class BotCommand:
    """Definition of a bot command.

    Attributes:
        name: Command keyword (matched case-insensitively after the prefix)
        description: Human-readable description
        handler: Function called with a CommandContext
        args: Positional argument definitions
        aliases: Alternative keywords
        restricted: Only the bot owner may run it
        guild_only: Refuse to run in one-to-one channels
        usage: Optional usage example (e.g., "remind <minutes> <text>")
    """
    name: str
    description: str
    handler: Callable[["CommandContext"], Any]
    args: Sequence[Argument] = ()
    aliases: Sequence[str] = ()
    restricted: bool = False
    guild_only: bool = False
    usage: Optional[str] = None

    def __post_init__(self):
        self.name = self.name.lower()
        self.args = build_args(self.args)
        self.aliases = tuple(alias.lower() for alias in self.aliases)


@dataclass
class Replacer:
    """An inline |key args| macro substituted into message text."""
    key: str
    handler: Callable[["ReplacerContext"], Any]
    description: str = ""
    args: Sequence[Argument] = ()

    def __post_init__(self):
        self.key = self.key.lower()
        self.args = build_args(self.args)


@dataclass
class CommandContext:
    """Context passed to command and await handlers.

    Attributes:
        message: The message that triggered the handler
        target: The BotCommand or Await being run
        args: Parsed arguments
        bot: The bot runner, if any
        trigger_response: For awaits, the response that armed the await
    """
    message: MessageContext
    target: Any
    args: List[Any] = field(default_factory=list)
    bot: Any = None
    trigger_response: Optional[SentMessage] = None

    @property
    def author(self) -> User:
        """Shortcut to message.author."""
        return self.message.author

    @property
    def channel(self) -> Channel:
        """Shortcut to message.channel."""
        return self.message.channel


@dataclass
class ReplacerContext:
    """Context passed to replacer handlers.

    Attributes:
        content: The full matched span, braces included
        capture: The text between the braces
        args: Parsed arguments
    """
    content: str
    capture: str
    args: List[Any] = field(default_factory=list)


def _as_list(value: Any) -> Optional[List[Any]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


@dataclass
class ResultOptions:
    """Options controlling how a command result is delivered.

    Attributes:
        channels: Channel IDs to send to (default: the originating channel)
        awaits: Awaits to arm once the response is sent
        react_interface: Reaction interface to bind to the response
        delete_after: Seconds until the response is deleted
    """
    channels: Optional[List[str]] = None
    awaits: Optional[List[Any]] = None
    react_interface: Any = None
    delete_after: Optional[float] = None

    def __post_init__(self):
        self.channels = _as_list(self.channels)
        self.awaits = _as_list(self.awaits)

    @classmethod
    def coerce(cls, value: Any) -> "ResultOptions":
        if value is None:
            return cls()
        if isinstance(value, ResultOptions):
            return value
        if isinstance(value, dict):
            return cls(**value)
        raise TypeError(f"Unsupported result options: {value!r}")


@dataclass
class CommandResult:
    """Something a handler asked to send."""
    content: Optional[str] = None
    embed: Optional[Dict[str, Any]] = None
    file: Optional[str] = None
    options: ResultOptions = field(default_factory=ResultOptions)

    def __post_init__(self):
        self.options = ResultOptions.coerce(self.options)

    @classmethod
    def coerce(cls, value: Any) -> Optional["CommandResult"]:
        """Normalize a handler return value; None for empty results."""
        if not value:
            return None
        if isinstance(value, CommandResult):
            return value
        if isinstance(value, str):
            return cls(content=value)
        if isinstance(value, dict):
            return cls(**value)
        raise TypeError(f"Unsupported command result: {value!r}")

    def to_outgoing(self) -> OutgoingMessage:
        return OutgoingMessage(content=self.content, embed=self.embed, file=self.file)


@dataclass
class Normalized:
    """Message content after replacers ran and the prefix was stripped."""
    content: str
    prefixed: bool


@dataclass
class ResultRecord:
    """Delivery record for one command result.

    `responses` holds one entry per channel: the SentMessage, or the
    exception raised while sending to that channel.
    """
    options: ResultOptions
    responses: List[Any] = field(default_factory=list)


@dataclass
class HandleResult:
    """What CommandRouter.handle did with a message."""
    target: Any
    results: List[ResultRecord] = field(default_factory=list)
