"""Inline replacer substitution (|key args| macros in message text)."""

import re
from typing import Callable, Optional

from .arguments import EntityResolver, parse_args
from .types import Guild, Replacer, ReplacerContext, count_mandatory
from ..logging import get_logger

logger = get_logger(__name__)

INVALID_KEY = "INVALID KEY"
INVALID_ARGS = "INVALID ARGS"


def build_replacer_pattern(open_brace: str, close_brace: str) -> re.Pattern:
    """Compile the pattern matching one |...| span."""
    return re.compile(f"{re.escape(open_brace)}(.+?){re.escape(close_brace)}")


def run_replacers(
    text: str,
    open_brace: str,
    close_brace: str,
    lookup: Callable[[str], Optional[Replacer]],
    resolver: Optional[EntityResolver] = None,
    scope: Optional[Guild] = None,
) -> str:
    """Substitute every replacer span in a single left-to-right pass.

    Replacement text is never scanned again, so a replacer returning
    another |span| does not chain.

    Args:
        text: Message text
        open_brace: Opening marker
        close_brace: Closing marker
        lookup: Returns the Replacer for a lowercase key, or None
        resolver: Resolver for user/channel arguments
        scope: Guild of the conversation

    Returns:
        The substituted text
    """
    def substitute(match: re.Match) -> str:
        capture = match.group(1)
        keyword, _, rest = capture.partition(" ")
        keyword = keyword.lower()

        replacer = lookup(keyword)
        if replacer is None:
            return INVALID_KEY

        args = []
        if replacer.args:
            args = parse_args(replacer.args, rest, resolver, scope)
            if args is None or len(args) < count_mandatory(replacer.args):
                return INVALID_ARGS

        return str(replacer.handler(ReplacerContext(
            content=match.group(0),
            capture=capture,
            args=args,
        )))

    return build_replacer_pattern(open_brace, close_brace).sub(substitute, text)
