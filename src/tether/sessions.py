"""Session registry: one live execution per conversation thread."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from apscheduler.schedulers.base import BaseScheduler
from loguru import logger

if TYPE_CHECKING:
    from tether.channels.events import MessageRef
    from tether.progress import TodoItem

TEMP_DIR_PREFIX = "tether-"


class StatusMarker(StrEnum):
    """Reaction applied to the user's message for the current turn phase."""

    THINKING = "🤔"
    WORKING = "⚙️"
    DONE = "✅"
    ERROR = "❌"
    CANCELLED = "⏹️"
    PROGRESS = "🔄"
    PENDING = "📋"


@dataclass(frozen=True)
class SessionKey:
    """Identity of one conversation thread with one user."""

    user_id: str
    conversation_id: str
    thread_id: str | None = None

    def __str__(self) -> str:
        return f"{self.user_id}-{self.conversation_id}-{self.thread_id or 'direct'}"


class CancellationToken:
    """Cooperative cancellation signal shared by a turn and its backend stream."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class Session:
    key: SessionKey
    session_id: str | None = None
    last_activity: float = field(default_factory=time.monotonic)
    todos: list[TodoItem] = field(default_factory=list)
    todo_message: MessageRef | None = None

    def clear_progress(self) -> None:
        self.todos = []
        self.todo_message = None


@dataclass
class Execution:
    """One user turn."""

    key: SessionKey
    token: CancellationToken = field(default_factory=CancellationToken)
    previous: Execution | None = None
    artifacts: list[Path] = field(default_factory=list)
    _finished: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def mark_finished(self) -> None:
        self._finished.set()

    async def wait_finished(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._finished.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def cleanup_artifacts(self) -> None:
        """Delete the temporary files this turn was handed."""
        for path in self.artifacts:
            with suppress(OSError):
                path.unlink(missing_ok=True)
            if path.parent.name.startswith(TEMP_DIR_PREFIX):
                with suppress(OSError):
                    path.parent.rmdir()
        self.artifacts.clear()


@dataclass
class ReactionState:
    """The single marker currently shown on one user message."""

    target: MessageRef | None = None
    marker: StatusMarker | None = None

    def retarget(self, target: MessageRef) -> None:
        # Markers left on a previous message stay there as its final status.
        if target != self.target:
            self.target = target
            self.marker = None


class SessionRegistry:
    """Owns sessions, active executions and reaction state, keyed by SessionKey."""

    def __init__(
        self,
        scheduler: BaseScheduler,
        *,
        cleanup_delay_seconds: float = 300.0,
        session_timeout_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._scheduler = scheduler
        self._cleanup_delay_seconds = cleanup_delay_seconds
        self._session_timeout_seconds = session_timeout_seconds
        self._clock = clock
        self._sessions: dict[SessionKey, Session] = {}
        self._executions: dict[SessionKey, Execution] = {}
        self._reactions: dict[SessionKey, ReactionState] = {}

    @staticmethod
    def key_for(user_id: str, conversation_id: str, thread_id: str | None = None) -> SessionKey:
        return SessionKey(user_id=user_id, conversation_id=conversation_id, thread_id=thread_id)

    @property
    def sessions(self) -> dict[SessionKey, Session]:
        return dict(self._sessions)

    def active_execution(self, key: SessionKey) -> Execution | None:
        return self._executions.get(key)

    def resolve(self, key: SessionKey) -> Session:
        session = self._sessions.get(key)
        if session is None:
            logger.debug("session.create key={}", key)
            session = Session(key=key, last_activity=self._clock())
            self._sessions[key] = session
        else:
            logger.debug("session.reuse key={} session_id={}", key, session.session_id)
            session.last_activity = self._clock()
        return session

    def start_execution(self, key: SessionKey) -> Execution:
        previous = self._executions.pop(key, None)
        if previous is not None:
            logger.info("session.execution.supersede key={}", key)
            previous.token.cancel()
        execution = Execution(key=key, previous=previous)
        self._executions[key] = execution
        return execution

    def end_execution(self, key: SessionKey, execution: Execution | None = None) -> None:
        current = self._executions.get(key)
        if current is None:
            return
        if execution is not None and current is not execution:
            return
        del self._executions[key]

    def reactions(self, key: SessionKey) -> ReactionState:
        state = self._reactions.get(key)
        if state is None:
            state = ReactionState()
            self._reactions[key] = state
        return state

    def schedule_cleanup(self, session: Session) -> None:
        armed_at = session.last_activity
        run_date = datetime.now(UTC) + timedelta(seconds=self._cleanup_delay_seconds)
        self._scheduler.add_job(
            self._cleanup_session,
            trigger="date",
            run_date=run_date,
            args=[session.key, armed_at],
            id=f"cleanup:{session.key}:{armed_at}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("session.cleanup.scheduled key={} delay={}s", session.key, self._cleanup_delay_seconds)

    async def _cleanup_session(self, key: SessionKey, armed_at: float) -> None:
        session = self._sessions.get(key)
        if session is None:
            return
        if session.last_activity > armed_at or key in self._executions:
            logger.debug("session.cleanup.skip key={} reason=active", key)
            return
        session.clear_progress()
        self._reactions.pop(key, None)
        logger.debug("session.cleanup.done key={}", key)

    def sweep_inactive(self, now: float | None = None) -> int:
        current = self._clock() if now is None else now
        stale = [
            key
            for key, session in self._sessions.items()
            if key not in self._executions and current - session.last_activity > self._session_timeout_seconds
        ]
        for key in stale:
            self._sessions.pop(key, None)
            self._reactions.pop(key, None)
        if stale:
            logger.info("session.sweep removed={} remaining={}", len(stale), len(self._sessions))
        return len(stale)

    def cancel_all(self) -> int:
        count = len(self._executions)
        logger.info("session.cancel_all count={}", count)
        for execution in self._executions.values():
            execution.token.cancel()
        self._executions.clear()
        return count
