"""Awaits: short-lived listeners for a user's next message in a channel."""

import threading
import weakref
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .types import MessageContext, Normalized, SentMessage, build_args
from ..errors import AwaitStateError, ConfigurationError
from ..logging import get_logger

logger = get_logger(__name__)


def _always(message: MessageContext, content: str) -> bool:
    return True


def _fire(registry_ref: weakref.ref, wait: "Await", generation: int) -> None:
    registry = registry_ref()
    if registry is not None:
        registry._expire(wait, generation)


class Await:
    """An expectation of a follow-up message from one user in one channel.

    An Await is inert until an AwaitRegistry arms it. Once armed it either
    triggers (its check passes and the router runs its handler), gets
    rejected (check fails; a one-time await is cleared), or expires after
    `timeout` seconds. Whenever an armed await is retired, `on_cancel` is
    called with it.

    Attributes:
        handler: Function called with a CommandContext when triggered
        args: Positional argument definitions
        check: Predicate (message, normalized content) -> bool
        timeout: Seconds until the await expires
        one_time: Clear the await after the first non-matching message
        refresh_on_use: Restart the timer after triggering instead of clearing
        on_cancel: Called with the await when it is retired
        user_id: User to listen to (default: author of the triggering message)
        channel_id: Channel to listen in (default: channel of the response)
        should_shift: Drop the first word before parsing arguments
        require_prefix: Only trigger on prefixed messages
    """

    DEFAULT_TIMEOUT = 15.0

    def __init__(
        self,
        handler: Callable[..., Any],
        args: Iterable[Any] = (),
        check: Callable[[MessageContext, str], bool] = None,
        timeout: float = DEFAULT_TIMEOUT,
        one_time: bool = False,
        refresh_on_use: bool = False,
        on_cancel: Callable[["Await"], Any] = None,
        user_id: str = None,
        channel_id: str = None,
        should_shift: bool = False,
        require_prefix: bool = False,
    ):
        self.handler = handler
        self.args = build_args(args)
        self.check = check or _always
        self.timeout = timeout
        self.one_time = one_time
        self.refresh_on_use = refresh_on_use
        self.on_cancel = on_cancel
        self.user_id = user_id
        self.channel_id = channel_id
        self.should_shift = should_shift
        self.require_prefix = require_prefix

        # Set when armed
        self.key: Optional[str] = None
        self.bound_channel_id: Optional[str] = None
        self.bound_user_id: Optional[str] = None
        self.trigger_response: Optional[SentMessage] = None
        self._registry_ref: Optional[weakref.ref] = None
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._armed = False

    def __repr__(self) -> str:
        return f"<Await key={self.key!r} armed={self._armed}>"

    @property
    def armed(self) -> bool:
        """Whether the await is currently listening."""
        return self._armed

    def _registry(self) -> "AwaitRegistry":
        if self._registry_ref is None:
            raise AwaitStateError("Await has not been armed yet")
        registry = self._registry_ref()
        if registry is None:
            raise AwaitStateError("The registry holding this await no longer exists")
        return registry

    def clear(self) -> "Await":
        """Retire the await and remove it from its registry."""
        self._registry().clear(self)
        return self

    def refresh(self) -> "Await":
        """Restart the expiry timer."""
        self._registry().refresh(self)
        return self


class AwaitRegistry:
    """Thread-safe table of armed awaits, keyed by channel ID + user ID.

    At most one await is reachable per (channel, user); registering another
    replaces the first in the table. Timers use compare-and-remove, so a
    timer firing for an await that was already cleared or replaced leaves
    the table alone.
    """

    def __init__(self):
        self._awaits: Dict[str, Await] = {}
        self._lock = threading.RLock()

    @staticmethod
    def make_key(channel_id: str, user_id: str) -> str:
        """Build the table key (IDs are assumed globally unique strings)."""
        return f"{channel_id}{user_id}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._awaits)

    def __contains__(self, wait: Await) -> bool:
        with self._lock:
            return wait.key is not None and self._awaits.get(wait.key) is wait

    def get(self, channel_id: str, user_id: str) -> Optional[Await]:
        """Get the await listening for a user in a channel."""
        with self._lock:
            return self._awaits.get(self.make_key(channel_id, user_id))

    def register(
        self,
        awaits: Union[Await, List[Await]],
        fallback_channel: str = None,
        fallback_user: str = None,
        trigger_response: SentMessage = None,
    ) -> List[Await]:
        """Arm one or more awaits.

        Args:
            awaits: An Await or list of Awaits
            fallback_channel: Channel ID for awaits without one
            fallback_user: User ID for awaits without one
            trigger_response: The response that armed the awaits

        Returns:
            The armed awaits

        Raises:
            TypeError: If an item is not an Await
            ConfigurationError: If an await has no channel or user to listen to
        """
        if not isinstance(awaits, (list, tuple)):
            awaits = [awaits]

        for wait in awaits:
            if not isinstance(wait, Await):
                raise TypeError(f"Supplied await is not an Await instance: {wait!r}")

        for wait in awaits:
            channel_id = wait.channel_id or fallback_channel
            user_id = wait.user_id or fallback_user
            if not channel_id:
                raise ConfigurationError("An await has no channel and no fallback channel was supplied")
            if not user_id:
                raise ConfigurationError("An await has no user and no fallback user was supplied")

            with self._lock:
                if wait._timer is not None:
                    wait._timer.cancel()
                # Re-arming moves the await; drop the entry under its old key
                if wait._armed and self._awaits.get(wait.key) is wait:
                    del self._awaits[wait.key]
                wait.key = self.make_key(channel_id, user_id)
                wait.bound_channel_id = channel_id
                wait.bound_user_id = user_id
                wait.trigger_response = trigger_response
                wait._registry_ref = weakref.ref(self)
                wait._armed = True
                self._awaits[wait.key] = wait
                self._start_timer(wait)

            logger.debug(f"Await armed (timeout {wait.timeout}s)")

        return list(awaits)

    def lookup(self, message: MessageContext, normalized: Normalized) -> Optional[Await]:
        """Find the await a message triggers.

        A prefix-requiring await ignores unprefixed messages. A failed check
        clears a one-time await and leaves any other await armed.

        Args:
            message: Incoming message
            normalized: Its normalized content

        Returns:
            The triggered Await, or None
        """
        key = self.make_key(message.channel.id, message.author.id)

        with self._lock:
            wait = self._awaits.get(key)
            if wait is None:
                return None
            if wait.require_prefix and not normalized.prefixed:
                return None
            if wait.check(message, normalized.content):
                return wait
            if not wait.one_time:
                return None
            retired = self._detach(wait)

        if retired:
            logger.debug("One-time await rejected a message and was cleared")
            self._notify_cancel(wait)
        return None

    def clear(self, wait: Await) -> bool:
        """Retire an await.

        Returns:
            True if the await was armed, False if it was already retired

        Raises:
            AwaitStateError: If the await was never armed
        """
        if wait.key is None:
            raise AwaitStateError("Await has not been armed yet")

        with self._lock:
            retired = self._detach(wait)

        if retired:
            self._notify_cancel(wait)
        return retired

    def refresh(self, wait: Await) -> bool:
        """Restart an await's timer.

        Returns:
            True if restarted, False if the await is no longer in the table

        Raises:
            AwaitStateError: If the await was never armed
        """
        if wait.key is None:
            raise AwaitStateError("Await has not been armed yet")

        with self._lock:
            if not wait._armed or self._awaits.get(wait.key) is not wait:
                return False
            wait._timer.cancel()
            self._start_timer(wait)
        return True

    def clear_all(self) -> None:
        """Drop every await without running cancel callbacks (used on shutdown)."""
        with self._lock:
            for wait in self._awaits.values():
                wait._armed = False
                wait._timer.cancel()
            self._awaits.clear()

    def _start_timer(self, wait: Await) -> None:
        wait._generation += 1
        timer = threading.Timer(wait.timeout, _fire, args=(wait._registry_ref, wait, wait._generation))
        timer.daemon = True
        wait._timer = timer
        timer.start()

    def _detach(self, wait: Await) -> bool:
        # Caller holds the lock
        if not wait._armed:
            return False
        wait._armed = False
        wait._timer.cancel()
        if self._awaits.get(wait.key) is wait:
            del self._awaits[wait.key]
        return True

    def _expire(self, wait: Await, generation: int) -> None:
        with self._lock:
            # A refresh started a newer timer
            if wait._generation != generation:
                return
            retired = self._detach(wait)

        if retired:
            logger.debug("Await expired")
            try:
                self._notify_cancel(wait)
            except Exception:
                logger.exception("Await cancel callback failed")

    @staticmethod
    def _notify_cancel(wait: Await) -> None:
        if wait.on_cancel is not None:
            wait.on_cancel(wait)
