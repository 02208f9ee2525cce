"""Per-turn state machine driving the chat surface from the agent event stream."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from enum import StrEnum
from pathlib import Path

from loguru import logger

from tether import progress
from tether.agent.backend import AgentBackend
from tether.agent.events import (
    AgentEvent,
    AssistantProse,
    AssistantToolUse,
    TerminalError,
    TerminalSuccess,
    ToolCall,
)
from tether.channels.base import ChatTransport
from tether.channels.events import MessageRef
from tether.concurrency import wait_until_cancelled
from tether.errors import BackendError, ExecutionCancelled, FormatError
from tether.redact import SecretMasker
from tether.render.formatting import TASK_LIST_TOOL, format_message, format_tool_use
from tether.render.renderer import ResponseRenderer
from tether.sessions import Execution, ReactionState, Session, SessionKey, SessionRegistry, StatusMarker


class TurnState(StrEnum):
    IDLE = "idle"
    THINKING = "thinking"
    WORKING = "working"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({TurnState.DONE, TurnState.ERROR, TurnState.CANCELLED})


async def apply_marker(
    transport: ChatTransport,
    state: ReactionState,
    marker: StatusMarker,
    *,
    key: object = None,
) -> None:
    """Swap the marker on the reaction target; failures are logged, never raised."""
    if state.target is None:
        return
    if state.marker == marker:
        logger.debug("reaction.skip key={} marker={}", key, marker)
        return

    previous = state.marker
    if previous is not None:
        try:
            await transport.remove_reaction(state.target, previous)
        except Exception as exc:
            logger.debug("reaction.remove_failed key={} marker={} error={}", key, previous, exc)
    try:
        await transport.add_reaction(state.target, marker)
    except Exception:
        logger.warning("reaction.add_failed key={} marker={}", key, marker)
        state.marker = None
        return
    state.marker = marker
    logger.debug("reaction.update key={} marker={} previous={}", key, marker, previous)


class StreamDispatcher:
    """Consumes one turn's agent events and keeps the chat surface in sync."""

    def __init__(
        self,
        *,
        transport: ChatTransport,
        backend: AgentBackend,
        registry: SessionRegistry,
        masker: SecretMasker,
        session: Session,
        execution: Execution,
        conversation_id: str,
        thread_id: str | None,
        cwd: Path,
        limit: int,
    ) -> None:
        self._transport = transport
        self._backend = backend
        self._registry = registry
        self._masker = masker
        self._session = session
        self._execution = execution
        self._conversation_id = conversation_id
        self._thread_id = thread_id
        self._cwd = cwd
        shared = registry.reactions(execution.key)
        self._reactions = ReactionState(target=shared.target, marker=shared.marker)
        self.renderer = ResponseRenderer(
            transport, masker, conversation_id=conversation_id, thread_id=thread_id, limit=limit
        )
        self.state = TurnState.IDLE
        self._streamed: list[str] = []

    @property
    def key(self) -> SessionKey:
        return self._execution.key

    async def run(self, prompt: str) -> TurnState:
        self.state = TurnState.THINKING
        await self._publish(StatusMarker.THINKING, "Thinking...")
        await self._mark(StatusMarker.THINKING)

        stream = self._backend.stream(prompt, self._session, self._execution.token, self._cwd)
        error: BaseException | None = None
        try:
            await self._consume(stream)
        except ExecutionCancelled:
            pass
        except asyncio.CancelledError:
            # Task cancellation (e.g. shutdown) still finalizes the message before propagating.
            self._execution.token.cancel()
            await self._finish_cancelled()
            raise
        except Exception as exc:
            if not self._execution.token.cancelled:
                error = exc
        finally:
            await self._close(stream)

        if self._execution.token.cancelled:
            await self._finish_cancelled()
        elif error is not None:
            await self._finish_error(error)
        else:
            await self._finish_done()
        return self.state

    async def _consume(self, stream: AsyncIterator[AgentEvent]) -> None:
        token = self._execution.token
        while True:
            event = await wait_until_cancelled(self._next_event(stream), token)
            if event is None:
                return
            await self._handle(event)

    @staticmethod
    async def _next_event(stream: AsyncIterator[AgentEvent]) -> AgentEvent | None:
        try:
            return await anext(stream)
        except StopAsyncIteration:
            return None

    async def _handle(self, event: AgentEvent) -> None:
        logger.debug("dispatch.event key={} type={}", self.key, type(event).__name__)
        if isinstance(event, AssistantProse):
            await self._handle_prose(event)
        elif isinstance(event, AssistantToolUse):
            await self._handle_tool_use(event)
        elif isinstance(event, TerminalSuccess):
            self._handle_success(event)
        elif isinstance(event, TerminalError):
            raise BackendError(event.message)
        else:
            logger.warning("dispatch.event.unknown key={} type={}", self.key, type(event).__name__)

    async def _handle_prose(self, event: AssistantProse) -> None:
        if not event.text:
            return
        self.state = TurnState.WORKING
        self._streamed.append(event.text)
        self.renderer.append(format_message(event.text))
        await self._publish(StatusMarker.WORKING, "Working...")

    async def _handle_tool_use(self, event: AssistantToolUse) -> None:
        self.state = TurnState.WORKING
        await self._mark(StatusMarker.WORKING)
        handled: set[str] = set()
        for call in event.tools:
            if call.name == TASK_LIST_TOOL and await self._handle_task_list(call):
                handled.add(call.id)

        content = format_tool_use(event, hidden=handled)
        if content:
            self.renderer.append(content)
            await self._publish(StatusMarker.WORKING, "Working...")

    def _handle_success(self, event: TerminalSuccess) -> None:
        logger.info(
            "dispatch.result key={} cost_usd={} duration_ms={}",
            self.key,
            event.cost_usd,
            event.duration_ms,
        )
        result = event.result
        if result and result not in self._streamed:
            self.renderer.append(format_message(result))

    async def _handle_task_list(self, call: ToolCall) -> bool:
        """Show a task-list update. Returns False when the input is malformed."""
        try:
            todos = progress.parse_todos(call.input)
        except FormatError as exc:
            logger.warning("dispatch.todo.invalid key={} error={}", self.key, exc)
            return False

        old = self._session.todos
        if not progress.is_significant(old, todos):
            return True
        self._session.todos = todos

        await self._show_task_list(progress.render(todos))
        summary = progress.diff_summary(old, todos)
        if summary:
            await self._post_notice(f"🔄 *Task Update:*\n{summary}")

        marker = progress.aggregate_marker(todos)
        if marker is not None:
            await self._mark(marker)
        return True

    async def _show_task_list(self, text: str) -> None:
        existing = self._session.todo_message
        if existing is not None:
            try:
                await self._transport.update_message(existing, self._masker.mask_text(text))
                logger.debug("dispatch.todo.updated key={} message_id={}", self.key, existing.message_id)
                return
            except Exception:
                logger.warning("dispatch.todo.update_failed key={} message_id={}", self.key, existing.message_id)
        ref = await self._post_notice(text)
        if ref is not None:
            self._session.todo_message = ref
            logger.debug("dispatch.todo.created key={} message_id={}", self.key, ref.message_id)

    async def _post_notice(self, text: str) -> MessageRef | None:
        try:
            return await self._transport.post_message(
                self._conversation_id, self._masker.mask_text(text), thread_id=self._thread_id
            )
        except Exception:
            logger.exception("dispatch.notice.failed key={}", self.key)
            return None

    async def _publish(self, marker: StatusMarker, status_text: str) -> None:
        try:
            await self.renderer.publish(marker.value, status_text)
        except Exception:
            logger.exception("dispatch.publish.failed key={} status={}", self.key, status_text)

    async def _mark(self, marker: StatusMarker) -> None:
        shared = self._registry.reactions(self.key)
        if shared.target != self._reactions.target:
            # A newer turn owns the shared state; only touch this turn's own message.
            await apply_marker(self._transport, self._reactions, marker, key=self.key)
            return
        await apply_marker(self._transport, shared, marker, key=self.key)
        self._reactions.marker = shared.marker

    async def _finish_done(self) -> None:
        self.state = TurnState.DONE
        await self._publish(StatusMarker.DONE, "Done")
        await self._mark(StatusMarker.DONE)
        logger.info("dispatch.done key={} messages={}", self.key, len(self.renderer.messages))
        self._execution.cleanup_artifacts()
        self._registry.schedule_cleanup(self._session)

    async def _finish_error(self, error: BaseException) -> None:
        self.state = TurnState.ERROR
        logger.opt(exception=error).error("dispatch.error key={}", self.key)
        self.renderer.append(f"❌ Error: {str(error) or 'Something went wrong'}")
        await self._publish(StatusMarker.ERROR, "Error occurred")
        await self._mark(StatusMarker.ERROR)
        self._execution.cleanup_artifacts()
        self._registry.schedule_cleanup(self._session)

    async def _finish_cancelled(self) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.state = TurnState.CANCELLED
        logger.info("dispatch.cancelled key={}", self.key)
        await self._publish(StatusMarker.CANCELLED, "Cancelled")
        await self._mark(StatusMarker.CANCELLED)
        self._execution.cleanup_artifacts()
        self._registry.schedule_cleanup(self._session)

    @staticmethod
    async def _close(stream: AsyncIterator[AgentEvent]) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            logger.exception("dispatch.stream.close_failed")
