"""Interfaces the router expects from its collaborators."""

from typing import Any, Callable, Mapping, Optional, Protocol

from .types import MessageContext, OutgoingMessage, SentMessage, User


class Transport(Protocol):
    """A chat network connection.

    `send` raises on failure; the router isolates failures per channel.
    """

    @property
    def own_id(self) -> Optional[str]:
        ...

    @property
    def users(self) -> Mapping[str, User]:
        ...

    def is_ready(self) -> bool:
        ...

    def send(self, channel_id: str, message: OutgoingMessage) -> SentMessage:
        ...

    def delete(self, message: SentMessage) -> None:
        ...

    def add_handler(self, handler: Callable[[MessageContext], None]) -> None:
        ...

    def start_streaming(self) -> None:
        ...

    def stop_streaming(self) -> None:
        ...


class ReactionBinder(Protocol):
    """Attaches an interactive reaction interface to a sent response."""

    def bind_interface(self, response: SentMessage, interface: Any, owner_id: str) -> Any:
        ...
