"""Task list tracking for the agent's structured todo tool."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tether.errors import FormatError
from tether.sessions import StatusMarker

TodoStatus = Literal["pending", "in_progress", "completed"]

STATUS_GLYPHS: dict[str, str] = {
    "pending": "⬜",
    "in_progress": "🔄",
    "completed": "✅",
}


class TodoItem(BaseModel):
    """One entry of the agent's task list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    content: str
    status: TodoStatus = "pending"
    id: str | None = None
    active_form: str | None = Field(default=None, alias="activeForm")

    @property
    def identity(self) -> str:
        return self.id or self.content


class _TodoInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    todos: list[TodoItem]


def parse_todos(raw: Any) -> list[TodoItem]:
    """Validate the input of a task-list tool call."""
    try:
        return _TodoInput.model_validate(raw).todos
    except ValidationError as exc:
        raise FormatError(f"invalid task list: {exc.error_count()} error(s)") from exc


def is_significant(old: Sequence[TodoItem], new: Sequence[TodoItem]) -> bool:
    """True when the count or any positional status differs."""
    if len(old) != len(new):
        return True
    return any(before.status != after.status for before, after in zip(old, new, strict=True))


def diff_summary(old: Sequence[TodoItem], new: Sequence[TodoItem]) -> str | None:
    previous = {item.identity: item for item in old}
    lines: list[str] = []
    for item in new:
        before = previous.get(item.identity)
        if before is None or before.status == item.status:
            continue
        lines.append(f"{STATUS_GLYPHS[item.status]} {item.content}: {before.status} → {item.status}")
    if not lines:
        return None
    return "\n".join(lines)


def render(todos: Sequence[TodoItem]) -> str:
    if not todos:
        return "📋 *Task List*\n\n_No tasks._"
    completed = sum(1 for item in todos if item.status == "completed")
    lines = [f"📋 *Task List* ({completed}/{len(todos)} completed)", ""]
    for item in todos:
        text = item.content
        if item.status == "completed":
            text = f"~{text}~"
        elif item.status == "in_progress" and item.active_form:
            text = f"{text} _({item.active_form})_"
        lines.append(f"{STATUS_GLYPHS[item.status]} {text}")
    return "\n".join(lines)


def aggregate_marker(todos: Sequence[TodoItem]) -> StatusMarker | None:
    if not todos:
        return None
    if all(item.status == "completed" for item in todos):
        return StatusMarker.DONE
    if any(item.status == "in_progress" for item in todos):
        return StatusMarker.PROGRESS
    return StatusMarker.PENDING

