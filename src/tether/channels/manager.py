"""Channel manager."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from loguru import logger

from tether.app.runtime import AppRuntime
from tether.channels.base import BaseChannel
from tether.channels.bus import MessageBus
from tether.channels.events import InboundMessage


class ChannelManager:
    """Route inbound messages from every channel to the runtime, one task per turn."""

    def __init__(self, bus: MessageBus, runtime: AppRuntime) -> None:
        self.bus = bus
        self.runtime = runtime
        self._channels: dict[str, BaseChannel] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._turns: set[asyncio.Task[None]] = set()
        self._unsub_inbound: Callable[[], None] | None = None

    def register(self, channel: BaseChannel) -> None:
        self._channels[channel.name] = channel

    def enabled_channels(self) -> Iterable[str]:
        return self._channels.keys()

    async def start(self) -> None:
        self._unsub_inbound = self.bus.on_inbound(self._handle_inbound)
        for channel in self._channels.values():
            self._tasks.append(asyncio.create_task(channel.start(self.bus.publish_inbound)))

    async def wait(self) -> None:
        """Block until every channel task has exited."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self) -> None:
        self.runtime.shutdown()
        for channel in self._channels.values():
            try:
                await channel.stop()
            except Exception:
                logger.exception("channel.stop.error channel={}", channel.name)
        for task in [*self._tasks, *self._turns]:
            task.cancel()
        for task in [*self._tasks, *self._turns]:
            try:
                await task
            except asyncio.CancelledError:
                continue
            except Exception:
                logger.exception("channel.task.error")
        self._tasks.clear()
        self._turns.clear()
        if self._unsub_inbound is not None:
            self._unsub_inbound()
            self._unsub_inbound = None

    async def _handle_inbound(self, message: InboundMessage) -> None:
        task = asyncio.create_task(self._process_inbound(message))
        self._turns.add(task)
        task.add_done_callback(self._turns.discard)

    async def _process_inbound(self, message: InboundMessage) -> None:
        channel = self._channels.get(message.channel)
        if channel is None:
            logger.warning("channel.inbound.unknown channel={}", message.channel)
            return
        try:
            await self.runtime.handle_inbound(message, channel)
        except Exception:
            logger.exception("{}.turn.error conversation_id={}", channel.name, message.conversation_id)
