from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from tether.agent.events import AgentEvent
from tether.channels.events import MessageRef
from tether.redact import SecretMasker
from tether.sessions import CancellationToken, Session, SessionRegistry


class FakeTransport:
    """In-memory chat surface that records every call."""

    name = "fake"

    def __init__(self, *, max_message_length: int = 39000, bot_id: str = "bot") -> None:
        self.max_message_length = max_message_length
        self.bot_id = bot_id
        self.texts: dict[MessageRef, str] = {}
        self.posted: list[MessageRef] = []
        self.history: dict[MessageRef, list[str]] = defaultdict(list)
        self.reactions: dict[MessageRef, list[str]] = defaultdict(list)
        self.reaction_calls: list[tuple[str, MessageRef, str]] = []
        self.fail_updates: set[MessageRef] = set()
        self.fail_remove = False
        self.fail_add = False

    async def post_message(self, conversation_id: str, text: str, *, thread_id: str | None = None) -> MessageRef:
        ref = MessageRef(conversation_id, f"m{len(self.posted) + 1}")
        self.posted.append(ref)
        self.texts[ref] = text
        self.history[ref].append(text)
        return ref

    async def update_message(self, ref: MessageRef, text: str) -> None:
        if ref in self.fail_updates:
            raise RuntimeError("message is gone")
        self.texts[ref] = text
        self.history[ref].append(text)

    async def add_reaction(self, ref: MessageRef, marker: str) -> None:
        self.reaction_calls.append(("add", ref, marker))
        if self.fail_add:
            raise RuntimeError("reaction rejected")
        self.reactions[ref].append(marker)

    async def remove_reaction(self, ref: MessageRef, marker: str) -> None:
        self.reaction_calls.append(("remove", ref, marker))
        if self.fail_remove:
            raise RuntimeError("reaction not found")
        self.reactions[ref].remove(marker)

    async def bot_identity(self) -> str:
        return self.bot_id


class FakeScheduler:
    """Records jobs instead of running them."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.running = False

    def add_job(self, func: Callable[..., Any], trigger: str | None = None, **kwargs: Any) -> None:
        self.jobs[kwargs.get("id") or str(len(self.jobs))] = {"func": func, "trigger": trigger, **kwargs}

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        return self.jobs.get(job_id)

    def start(self) -> None:
        self.running = True

    def shutdown(self, wait: bool = True) -> None:
        self.running = False


class ScriptedBackend:
    """Plays one script per turn.

    A script item is an event to yield, an exception to raise, or an
    ``asyncio.Event`` to wait on before continuing.
    """

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = list(scripts)
        self.prompts: list[str] = []
        self.closed = 0

    async def stream(
        self,
        prompt: str,
        session: Session,
        token: CancellationToken,
        cwd: Path,
    ) -> AsyncIterator[AgentEvent]:
        self.prompts.append(prompt)
        script = self._scripts.pop(0)
        try:
            for item in script:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                elif isinstance(item, BaseException):
                    raise item
                else:
                    yield item
        finally:
            self.closed += 1


async def wait_for(predicate: Callable[[], bool], *, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was never met")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def registry(scheduler: FakeScheduler) -> SessionRegistry:
    return SessionRegistry(scheduler, cleanup_delay_seconds=300, session_timeout_seconds=1800)  # type: ignore[arg-type]


@pytest.fixture
def masker() -> SecretMasker:
    return SecretMasker()
