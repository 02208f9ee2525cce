"""Agent backend built on the Claude Agent SDK."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import suppress
from pathlib import Path
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
    query,
)
from loguru import logger

from tether.agent.events import (
    AgentEvent,
    AssistantProse,
    AssistantToolUse,
    TerminalError,
    TerminalSuccess,
    ToolCall,
)
from tether.errors import BackendError
from tether.sessions import CancellationToken, Session

_DONE = object()


def convert_message(message: Any) -> AgentEvent | None:
    """Map one SDK message to a turn event, or None for messages the dispatcher ignores."""
    if isinstance(message, AssistantMessage):
        texts = [block.text for block in message.content if isinstance(block, TextBlock)]
        tools = tuple(
            ToolCall(id=block.id, name=block.name, input=dict(block.input or {}))
            for block in message.content
            if isinstance(block, ToolUseBlock)
        )
        if tools:
            return AssistantToolUse(tools=tools, text="".join(texts))
        text = "".join(texts)
        return AssistantProse(text=text) if text else None
    if isinstance(message, ResultMessage):
        if message.subtype == "success" and not message.is_error:
            return TerminalSuccess(
                result=message.result,
                session_id=message.session_id,
                cost_usd=message.total_cost_usd,
                duration_ms=message.duration_ms,
            )
        errors = tuple(getattr(message, "errors", None) or ([message.result] if message.result else []))
        return TerminalError(subtype=message.subtype, errors=errors, session_id=message.session_id)
    return None


class ClaudeBackend:
    """Runs one ``query`` per turn, resuming the session's previous conversation."""

    def __init__(
        self,
        *,
        model: str | None = None,
        permission_mode: str = "bypassPermissions",
        system_prompt: str | None = None,
    ) -> None:
        self._model = model
        self._permission_mode = permission_mode
        self._system_prompt = system_prompt

    def build_options(self, session: Session, cwd: Path) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "cwd": cwd,
            "resume": session.session_id,
            "permission_mode": self._permission_mode,
        }
        if self._model:
            kwargs["model"] = self._model
        if self._system_prompt:
            kwargs["system_prompt"] = {"type": "preset", "preset": "claude_code", "append": self._system_prompt}
        return ClaudeAgentOptions(**kwargs)

    async def stream(
        self,
        prompt: str,
        session: Session,
        token: CancellationToken,
        cwd: Path,
    ) -> AsyncIterator[AgentEvent]:
        # The SDK's generator must be driven and closed from a single task, so it
        # runs in a producer task and events are handed over through a queue.
        queue: asyncio.Queue[Any] = asyncio.Queue()
        producer = asyncio.create_task(self._produce(prompt, session, token, cwd, queue))
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            if not producer.done():
                producer.cancel()
                with suppress(asyncio.CancelledError):
                    await producer

    async def _produce(
        self,
        prompt: str,
        session: Session,
        token: CancellationToken,
        cwd: Path,
        queue: asyncio.Queue[Any],
    ) -> None:
        options = self.build_options(session, cwd)
        logger.info(
            "claude.query.start session_id={} cwd={} prompt={}",
            session.session_id,
            cwd,
            prompt[:200],
        )
        try:
            async for message in query(prompt=prompt, options=options):
                if token.cancelled:
                    logger.debug("claude.query.cancelled key={}", session.key)
                    break
                self._record_session(session, message)
                event = convert_message(message)
                if event is None:
                    logger.debug("claude.query.skip type={}", type(message).__name__)
                    continue
                await queue.put(event)
        except Exception as exc:
            error = BackendError(str(exc) or type(exc).__name__)
            error.__cause__ = exc
            await queue.put(error)
            return
        await queue.put(_DONE)

    @staticmethod
    def _record_session(session: Session, message: Any) -> None:
        session_id: str | None = None
        if isinstance(message, SystemMessage) and message.subtype == "init":
            session_id = message.data.get("session_id")
        elif isinstance(message, ResultMessage):
            session_id = message.session_id
        if session_id and session_id != session.session_id:
            logger.info("claude.session key={} session_id={}", session.key, session_id)
            session.session_id = session_id
