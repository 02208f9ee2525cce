"""Events produced by an agent backend for one turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssistantProse:
    """Assistant output made only of text."""

    text: str


@dataclass(frozen=True)
class AssistantToolUse:
    """Assistant output invoking at least one tool; ``text`` holds any prose around the calls."""

    tools: tuple[ToolCall, ...]
    text: str = ""


@dataclass(frozen=True)
class TerminalSuccess:
    result: str | None = None
    session_id: str | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class TerminalError:
    subtype: str
    errors: tuple[str, ...] = ()
    session_id: str | None = None

    @property
    def message(self) -> str:
        if self.errors:
            return "; ".join(self.errors)
        return f"agent run ended with {self.subtype}"


AgentEvent = AssistantProse | AssistantToolUse | TerminalSuccess | TerminalError
