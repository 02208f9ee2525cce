"""Agent backend interface."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol

from tether.agent.events import AgentEvent
from tether.sessions import CancellationToken, Session


class AgentBackend(Protocol):
    """Produces the event stream for one prompt.

    Implementations record the backend session id on ``session`` once known, and
    stop producing events after ``token`` is cancelled.
    """

    def stream(
        self,
        prompt: str,
        session: Session,
        token: CancellationToken,
        cwd: Path,
    ) -> AsyncIterator[AgentEvent]: ...
