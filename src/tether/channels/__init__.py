"""Channel adapters and bus exports."""

from tether.channels.base import BaseChannel, ChatTransport
from tether.channels.bus import MessageBus
from tether.channels.events import Attachment, InboundMessage, MessageRef

__all__ = [
    "Attachment",
    "BaseChannel",
    "ChatTransport",
    "InboundMessage",
    "MessageBus",
    "MessageRef",
]
