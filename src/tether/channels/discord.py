"""Discord channel adapter."""

from __future__ import annotations

import contextlib
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import discord
from discord.ext import commands
from loguru import logger

from tether.channels.base import BaseChannel, exclude_none
from tether.channels.events import Attachment, InboundMessage, MessageRef
from tether.channels.utils import resolve_proxy, strip_mentions
from tether.config import Settings
from tether.errors import TransportError
from tether.sessions import TEMP_DIR_PREFIX

DISCORD_MAX_MESSAGE_LENGTH = 2000
THREAD_NAME_LENGTH = 80


@dataclass(frozen=True)
class DiscordConfig:
    """Discord adapter config."""

    token: str
    allow_from: set[str]
    allow_channels: set[str]
    command_prefix: str = "!"
    proxy: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> DiscordConfig:
        return cls(
            token=settings.discord_token or "",
            allow_from=set(settings.discord_allow_from),
            allow_channels=set(settings.discord_allow_channels),
            command_prefix=settings.discord_command_prefix,
            proxy=settings.discord_proxy,
        )


class DiscordChannel(BaseChannel):
    """Discord adapter based on discord.py.

    Direct messages are always handled. In guild channels the bot answers when
    mentioned, opening a thread for the conversation; later messages in that
    thread are handled without a mention.
    """

    name = "discord"
    max_message_length = DISCORD_MAX_MESSAGE_LENGTH

    def __init__(self, config: DiscordConfig) -> None:
        self._config = config
        self._bot: commands.Bot | None = None
        self._on_receive: Callable[[InboundMessage], Awaitable[None]] | None = None
        self._active_threads: set[str] = set()
        self._bot_id: str | None = None

    async def start(self, on_receive: Callable[[InboundMessage], Awaitable[None]]) -> None:
        if not self._config.token:
            raise RuntimeError("discord token is empty")

        self._on_receive = on_receive
        intents = discord.Intents.default()
        intents.messages = True
        intents.message_content = True
        intents.reactions = True

        proxy, _ = resolve_proxy(self._config.proxy)
        bot = commands.Bot(command_prefix=self._config.command_prefix, intents=intents, help_command=None, proxy=proxy)
        self._bot = bot

        @bot.event
        async def on_ready() -> None:
            logger.info("discord.ready user={} id={}", str(bot.user), bot.user.id if bot.user else "<unknown>")

        @bot.event
        async def on_message(message: discord.Message) -> None:
            await self._on_message(message)

        logger.info(
            "discord.start allow_from_count={} allow_channels_count={} proxy_enabled={}",
            len(self._config.allow_from),
            len(self._config.allow_channels),
            bool(proxy),
        )
        try:
            async with bot:
                await bot.start(self._config.token)
        finally:
            self._bot = None
            logger.info("discord.stopped")

    async def stop(self) -> None:
        if self._bot is not None:
            await self._bot.close()

    async def bot_identity(self) -> str:
        if self._bot_id is None:
            user = self._bot.user if self._bot is not None else None
            if user is None:
                # Not logged in yet; do not cache the miss.
                return ""
            self._bot_id = str(user.id)
        return self._bot_id

    async def post_message(self, conversation_id: str, text: str, *, thread_id: str | None = None) -> MessageRef:
        channel = await self._resolve_channel(conversation_id)
        if channel is None:
            raise TransportError(f"discord channel {conversation_id} is not reachable")
        kwargs: dict[str, Any] = {"content": text}
        if thread_id and thread_id != conversation_id:
            kwargs["reference"] = discord.MessageReference(
                message_id=int(thread_id), channel_id=int(conversation_id), fail_if_not_exists=False
            )
            kwargs["mention_author"] = False
        try:
            sent = await channel.send(**kwargs)
        except discord.DiscordException as exc:
            raise TransportError(f"discord send failed: {exc}") from exc
        return MessageRef(conversation_id=str(sent.channel.id), message_id=str(sent.id))

    async def update_message(self, ref: MessageRef, text: str) -> None:
        message = await self._partial_message(ref)
        try:
            await message.edit(content=text)
        except discord.DiscordException as exc:
            raise TransportError(f"discord edit failed: {exc}") from exc

    async def add_reaction(self, ref: MessageRef, marker: str) -> None:
        message = await self._partial_message(ref)
        try:
            await message.add_reaction(marker)
        except discord.DiscordException as exc:
            raise TransportError(f"discord reaction add failed: {exc}") from exc

    async def remove_reaction(self, ref: MessageRef, marker: str) -> None:
        if self._bot is None or self._bot.user is None:
            raise TransportError("discord client is not connected")
        message = await self._partial_message(ref)
        try:
            await message.remove_reaction(marker, self._bot.user)
        except discord.DiscordException as exc:
            raise TransportError(f"discord reaction remove failed: {exc}") from exc

    async def _on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if not self._allow_message(message):
            return
        if self._on_receive is None:
            logger.warning("discord.inbound no handler for received messages")
            return

        inbound = await self._to_inbound(message)
        if inbound is None:
            return
        logger.info(
            "discord.inbound conversation_id={} sender_id={} username={} content={}",
            inbound.conversation_id,
            message.author.id,
            message.author.name,
            inbound.content[:100],
        )
        await self._on_receive(inbound)

    async def _to_inbound(self, message: discord.Message) -> InboundMessage | None:
        content = strip_mentions(message.content or "")
        prefix = f"{self._config.command_prefix}tether "
        if content.startswith(prefix):
            content = content[len(prefix) :]
        attachments = await self._download_attachments(message)
        if not content and not attachments:
            return None

        channel = message.channel
        channel_id = str(channel.id)
        common = {
            "channel": self.name,
            "sender_id": str(message.author.id),
            "message_id": str(message.id),
            "content": content,
            "attachments": attachments,
        }
        if isinstance(channel, discord.DMChannel):
            return InboundMessage(conversation_id=channel_id, thread_id=channel_id, is_direct=True, **common)
        if isinstance(channel, discord.Thread):
            self._active_threads.add(channel_id)
            return InboundMessage(conversation_id=channel_id, thread_id=channel_id, **common)

        thread = await self._open_thread(message, content)
        if thread is None:
            return InboundMessage(conversation_id=channel_id, **common)
        thread_id = str(thread.id)
        self._active_threads.add(thread_id)
        return InboundMessage(
            conversation_id=thread_id,
            thread_id=thread_id,
            source_conversation_id=channel_id,
            **common,
        )

    async def _open_thread(self, message: discord.Message, content: str) -> discord.Thread | None:
        name = (content.splitlines()[0] if content else "tether")[:THREAD_NAME_LENGTH]
        try:
            return await message.create_thread(name=name or "tether")
        except discord.DiscordException:
            logger.exception("discord.thread.create_failed channel_id={}", message.channel.id)
            return None

    async def _download_attachments(self, message: discord.Message) -> tuple[Attachment, ...]:
        if not message.attachments:
            return ()
        target = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX))
        downloaded: list[Attachment] = []
        for att in message.attachments:
            path = target / f"{att.id}-{att.filename}"
            try:
                await att.save(path)
            except discord.DiscordException:
                logger.exception("discord.attachment.failed filename={}", att.filename)
                continue
            downloaded.append(Attachment(name=att.filename, path=path, content_type=att.content_type, size=att.size))
        return tuple(downloaded)

    def _allow_message(self, message: discord.Message) -> bool:
        channel = message.channel
        parent_id = getattr(channel, "parent_id", None)
        channel_ids = {str(channel.id)} | ({str(parent_id)} if parent_id else set())
        if self._config.allow_channels and channel_ids.isdisjoint(self._config.allow_channels):
            return False

        if not message.content.strip() and not message.attachments:
            return False

        sender_tokens = {str(message.author.id), message.author.name}
        if getattr(message.author, "global_name", None):
            sender_tokens.add(cast(str, message.author.global_name))
        if self._config.allow_from and sender_tokens.isdisjoint(self._config.allow_from):
            logger.warning(
                "discord.inbound.denied channel_id={} sender_id={} reason=allow_from",
                channel.id,
                message.author.id,
            )
            return False

        if isinstance(channel, discord.DMChannel):
            return True
        if str(channel.id) in self._active_threads:
            return True
        if message.content.startswith(f"{self._config.command_prefix}tether"):
            return True

        bot_user = self._bot.user if self._bot is not None else None
        return bot_user is not None and bot_user in message.mentions

    async def _resolve_channel(self, channel_id: str) -> discord.abc.Messageable | None:
        if self._bot is None:
            return None
        channel = self._bot.get_channel(int(channel_id))
        if channel is not None:
            return channel  # type: ignore[return-value]
        with contextlib.suppress(discord.DiscordException):
            fetched = await self._bot.fetch_channel(int(channel_id))
            if isinstance(fetched, discord.abc.Messageable):
                return fetched
        return None

    async def _partial_message(self, ref: MessageRef) -> discord.PartialMessage:
        channel = await self._resolve_channel(ref.conversation_id)
        get_partial = getattr(channel, "get_partial_message", None)
        if get_partial is None:
            raise TransportError(f"discord channel {ref.conversation_id} is not reachable")
        return cast(discord.PartialMessage, get_partial(int(ref.message_id)))

    def describe(self) -> dict[str, Any]:
        return exclude_none({
            "name": self.name,
            "bot_id": self._bot_id,
            "active_threads": len(self._active_threads),
            "proxy_enabled": bool(self._config.proxy),
        })
