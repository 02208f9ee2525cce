"""Chat event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path


@dataclass(frozen=True)
class MessageRef:
    """Address of one message on the chat surface."""

    conversation_id: str
    message_id: str


@dataclass(frozen=True)
class Attachment:
    """A file the user uploaded, already downloaded to a temporary path."""

    name: str
    path: Path
    content_type: str | None = None
    size: int = 0


@dataclass(frozen=True)
class InboundMessage:
    """Message received from an external channel.

    ``conversation_id`` is where replies are posted. ``source_conversation_id``
    is where the user's message itself lives when that differs, e.g. when the
    bot opened a thread for a message posted in a parent channel.
    """

    channel: str
    sender_id: str
    conversation_id: str
    message_id: str
    content: str
    thread_id: str | None = None
    is_direct: bool = False
    attachments: tuple[Attachment, ...] = ()
    source_conversation_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def thread_root(self) -> str:
        """The thread this message belongs to, or the message itself when it starts one."""
        return self.thread_id or self.message_id

    @property
    def source(self) -> MessageRef:
        return MessageRef(self.source_conversation_id or self.conversation_id, self.message_id)
