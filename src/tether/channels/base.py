"""Chat transport interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from tether.channels.events import InboundMessage, MessageRef


def exclude_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@runtime_checkable
class ChatTransport(Protocol):
    """Primitives the orchestrator needs from a chat surface."""

    name: str
    max_message_length: int

    async def post_message(self, conversation_id: str, text: str, *, thread_id: str | None = None) -> MessageRef: ...

    async def update_message(self, ref: MessageRef, text: str) -> None: ...

    async def add_reaction(self, ref: MessageRef, marker: str) -> None: ...

    async def remove_reaction(self, ref: MessageRef, marker: str) -> None: ...

    async def bot_identity(self) -> str: ...


class BaseChannel(ABC):
    """Abstract base class for channel adapters."""

    name: str = "base"
    max_message_length: int = 39000

    @abstractmethod
    async def start(self, on_receive: Callable[[InboundMessage], Awaitable[None]]) -> None:
        """Start the channel and deliver inbound messages to ``on_receive``."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect from the chat surface."""

    @abstractmethod
    async def post_message(self, conversation_id: str, text: str, *, thread_id: str | None = None) -> MessageRef:
        pass

    @abstractmethod
    async def update_message(self, ref: MessageRef, text: str) -> None:
        pass

    @abstractmethod
    async def add_reaction(self, ref: MessageRef, marker: str) -> None:
        pass

    @abstractmethod
    async def remove_reaction(self, ref: MessageRef, marker: str) -> None:
        pass

    @abstractmethod
    async def bot_identity(self) -> str:
        pass
