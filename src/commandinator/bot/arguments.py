"""Argument tokenizing and type coercion."""

import re
from typing import Any, List, Mapping, Optional, Sequence

from .types import Argument, ArgType, Guild, User
from ..logging import get_logger

logger = get_logger(__name__)

# Leading float, the way a lenient float parser reads "12abc" as 12
_FLOAT_PREFIX = re.compile(r'\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))')


def parse_number(text: str) -> Optional[float]:
    """Parse the leading number of a string.

    Args:
        text: Raw argument text

    Returns:
        The parsed float, or None if the text does not start with a number
    """
    match = _FLOAT_PREFIX.match(text)
    if not match:
        return None
    return float(match.group(1).replace("Infinity", "inf"))


class EntityResolver:
    """Resolves user and channel arguments from mentions or names.

    A mention (<@id>, <@!id>, <#id>) is looked up by ID. Anything else is
    matched case-insensitively as a substring of display names. Users are
    searched in the guild's member index first, then in the global user
    index; channels only in the guild.
    """

    MENTION_PATTERNS = {
        ArgType.USER: re.compile(r'<@!?([^>\s]+)>'),
        ArgType.CHANNEL: re.compile(r'<#([^>\s]+)>'),
    }

    def __init__(self, users: Optional[Mapping[str, User]] = None):
        """Initialize the resolver.

        Args:
            users: Global user index (typically the transport's live cache)
        """
        self._users = users if users is not None else {}

    def _containers(self, scope: Optional[Guild], arg_type: ArgType) -> List[Mapping[str, Any]]:
        if arg_type is ArgType.USER:
            containers = [scope.members] if scope is not None else []
            containers.append(self._users)
            return containers
        return [scope.channels] if scope is not None else []

    def resolve(self, scope: Optional[Guild], raw: str, arg_type: ArgType) -> Optional[Any]:
        """Find the entity an argument refers to.

        Args:
            scope: Guild of the conversation (None for one-to-one channels)
            raw: Raw argument text
            arg_type: ArgType.USER or ArgType.CHANNEL

        Returns:
            The matching User/Channel, or None
        """
        arg_type = ArgType(arg_type)
        containers = self._containers(scope, arg_type)

        match = self.MENTION_PATTERNS[arg_type].search(raw)
        if match:
            for container in containers:
                entity = container.get(match.group(1))
                if entity is not None:
                    return entity
            return None

        needle = raw.lower()
        for container in containers:
            for entity in container.values():
                if needle in (entity.name or "").lower():
                    return entity
        return None


def parse_args(
    specs: Sequence[Argument],
    text: str,
    resolver: Optional[EntityResolver] = None,
    scope: Optional[Guild] = None,
) -> Optional[List[Any]]:
    """Split text into positional arguments.

    Each argument runs up to its delimiter; the last one takes the rest of
    the text. Positions that received no text are None, and trailing ones
    are dropped, so the result may be shorter than `specs`.

    Number arguments that do not parse, or parse to 0, fail the whole
    call. So do user/channel arguments that do not resolve.

    Args:
        specs: Argument definitions, in order
        text: Text following the command keyword
        resolver: Resolver for user/channel arguments
        scope: Guild passed to the resolver

    Returns:
        Parsed values, or None if any argument is invalid
    """
    parsed: List[Any] = []
    cursor = 0
    last = len(specs) - 1

    for index, spec in enumerate(specs):
        chars = []
        for position in range(cursor, len(text) + 1):
            if position >= len(text) or (index != last and text.startswith(spec.delimiter, position)):
                cursor = position + len(spec.delimiter)
                break
            chars.append(text[position])

        if not chars:
            parsed.append(None)
            continue

        raw = "".join(chars)

        if spec.type is ArgType.NUMBER:
            number = parse_number(raw)
            # 0 is rejected along with garbage
            if not number:
                return None
            parsed.append(number)
        elif spec.type in (ArgType.USER, ArgType.CHANNEL):
            value = resolver.resolve(scope, raw, spec.type) if resolver else None
            if value is None:
                logger.debug(f"Could not resolve {spec.type.value} argument '{spec.name}'")
                return None
            parsed.append(value)
        else:
            parsed.append(raw)

    while parsed and parsed[-1] is None:
        parsed.pop()

    return parsed


def check_arg_order(specs: Sequence[Argument]) -> bool:
    """Check that no mandatory argument follows an optional one."""
    seen_optional = False
    for spec in specs:
        if not spec.mandatory:
            seen_optional = True
        elif seen_optional:
            return False
    return True
