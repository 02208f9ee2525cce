"""Accumulate streamed content into size-bounded chat messages."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from tether.channels.base import ChatTransport
from tether.channels.events import MessageRef
from tether.config import DEFAULT_MAX_MESSAGE_LENGTH
from tether.redact import SecretMasker

PART_SEPARATOR = "\n\n---\n\n"
# Room left for the status header above the body.
HEADER_RESERVE = 32


def chunk_text(text: str, limit: int) -> list[str]:
    """Split ``text`` into pieces of at most ``limit`` characters, preferring line breaks."""
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, limit)
        if split_at <= 0:
            split_at = limit
        chunks.append(remaining[:split_at].rstrip())
        remaining = remaining[split_at:].lstrip("\n")
    return [chunk for chunk in chunks if chunk]


class ResponseRenderer:
    """Owns the live response message of one turn.

    Content parts are appended as the agent streams and the whole message is
    re-rendered under a status header on every publish. Parts longer than the
    message budget are chunked on append. When the text would exceed ``limit``
    the leading parts that fit stay in the current message and the rest moves
    to a fresh message, which becomes the one later publishes update.
    """

    def __init__(
        self,
        transport: ChatTransport,
        masker: SecretMasker,
        *,
        conversation_id: str,
        thread_id: str | None = None,
        limit: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._transport = transport
        self._masker = masker
        self._conversation_id = conversation_id
        self._thread_id = thread_id
        self._limit = limit
        self._part_limit = max(limit - HEADER_RESERVE, limit // 2, 1)
        self._current_text: str | None = None
        self.parts: list[str] = []
        self.message: MessageRef | None = None
        self.messages: list[MessageRef] = []

    @property
    def limit(self) -> int:
        return self._limit

    def append(self, part: str) -> None:
        if part:
            self.parts.extend(chunk_text(part, self._part_limit))

    def render(self, status_emoji: str, status_text: str, parts: Sequence[str] | None = None) -> str:
        header = f"{status_emoji} *{status_text}*"
        body = self.parts if parts is None else parts
        if not body:
            return header
        return f"{header}\n\n{PART_SEPARATOR.join(body)}"

    async def publish(self, status_emoji: str, status_text: str) -> None:
        if self.message is None:
            text = self.render(status_emoji, status_text)
            self.message = await self._post(text)
            self.messages.append(self.message)
            self._current_text = text
            return

        while len(self.parts) > 1 and len(self.render(status_emoji, status_text)) > self._limit:
            await self._overflow(status_emoji, status_text)
        text = self.render(status_emoji, status_text)
        if text != self._current_text:
            await self._update(self.message, text)
            self._current_text = text

    def _fitting(self, status_emoji: str, status_text: str) -> int:
        """Number of leading parts that fit in one message, at least one."""
        count = 1
        while count < len(self.parts):
            candidate = self.render(status_emoji, status_text, self.parts[: count + 1])
            if len(candidate) > self._limit:
                break
            count += 1
        return count

    async def _overflow(self, status_emoji: str, status_text: str) -> None:
        assert self.message is not None
        split = self._fitting(status_emoji, status_text)
        kept, rest = self.parts[:split], self.parts[split:]
        try:
            await self._update(self.message, self.render(status_emoji, status_text, kept))
        except Exception:
            # Continue in a new message rather than retrying the same split.
            logger.exception(
                "render.overflow.update_failed conversation_id={} message_id={}",
                self._conversation_id,
                self.message.message_id,
            )
        text = self.render(status_emoji, status_text, rest[:1])
        new_message = await self._post(text)
        logger.debug(
            "render.overflow conversation_id={} previous={} next={} parts={}",
            self._conversation_id,
            self.message.message_id,
            new_message.message_id,
            len(kept),
        )
        self.parts = rest
        self.message = new_message
        self.messages.append(new_message)
        self._current_text = text

    async def _post(self, text: str) -> MessageRef:
        return await self._transport.post_message(
            self._conversation_id, self._masker.mask_text(text), thread_id=self._thread_id
        )

    async def _update(self, ref: MessageRef, text: str) -> None:
        await self._transport.update_message(ref, self._masker.mask_text(text))
