"""Render agent output as chat markup."""

from __future__ import annotations

import re
from collections.abc import Callable, Container
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from tether.agent.events import AssistantToolUse, ToolCall

TASK_LIST_TOOL = "TodoWrite"
EDIT_PREVIEW_LENGTH = 200
WRITE_PREVIEW_LENGTH = 300

_CODE_FENCE_RE = re.compile(r"```(\w+)?\n([\s\S]*?)```")
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_UNDERLINE_RE = re.compile(r"__([^_]+)__")


def truncate(text: str | None, limit: int) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_message(text: str) -> str:
    """Convert GitHub-flavoured markdown to chat markup."""
    formatted = _CODE_FENCE_RE.sub(lambda match: f"```{match.group(2)}```", text)
    formatted = _BOLD_RE.sub(r"*\1*", formatted)
    return _UNDERLINE_RE.sub(r"_\1_", formatted)


class _Hunk(BaseModel):
    old_string: str
    new_string: str


class _EditInput(_Hunk):
    file_path: str


class _MultiEditInput(BaseModel):
    file_path: str
    edits: list[_Hunk]


class _WriteInput(BaseModel):
    file_path: str
    content: str


class _ReadInput(BaseModel):
    file_path: str


class _BashInput(BaseModel):
    command: str


def _format_hunks(file_path: str, hunks: list[_Hunk]) -> str:
    result = f"📝 *Editing `{file_path}`*\n"
    for hunk in hunks:
        result += "\n```diff\n"
        result += f"-{truncate(hunk.old_string, EDIT_PREVIEW_LENGTH)}\n"
        result += f"+{truncate(hunk.new_string, EDIT_PREVIEW_LENGTH)}\n"
        result += "```"
    return result


def _format_edit(tool_input: dict[str, Any]) -> str:
    edit = _EditInput.model_validate(tool_input)
    return _format_hunks(edit.file_path, [edit])


def _format_multi_edit(tool_input: dict[str, Any]) -> str:
    edit = _MultiEditInput.model_validate(tool_input)
    return _format_hunks(edit.file_path, edit.edits)


def _format_write(tool_input: dict[str, Any]) -> str:
    write = _WriteInput.model_validate(tool_input)
    preview = truncate(write.content, WRITE_PREVIEW_LENGTH)
    return f"📄 *Creating `{write.file_path}`*\n```\n{preview}\n```"


def _format_read(tool_input: dict[str, Any]) -> str:
    return f"👁️ *Reading `{_ReadInput.model_validate(tool_input).file_path}`*"


def _format_bash(tool_input: dict[str, Any]) -> str:
    return f"🖥️ *Running command:*\n```bash\n{_BashInput.model_validate(tool_input).command}\n```"


def format_generic_tool(name: str) -> str:
    return f"🔧 *Using {name}*"


TOOL_FORMATTERS: dict[str, Callable[[dict[str, Any]], str]] = {
    "Edit": _format_edit,
    "MultiEdit": _format_multi_edit,
    "Write": _format_write,
    "Read": _format_read,
    "Bash": _format_bash,
}


def format_tool_call(call: ToolCall) -> str:
    formatter = TOOL_FORMATTERS.get(call.name)
    if formatter is None:
        return format_generic_tool(call.name)
    try:
        return formatter(call.input)
    except ValidationError as exc:
        logger.warning("format.tool.invalid_input tool={} errors={}", call.name, exc.error_count())
        return format_generic_tool(call.name)


def format_tool_use(event: AssistantToolUse, *, hidden: Container[str] | None = None) -> str:
    """Render the prose and tool calls of one event as a single block.

    Calls whose id is in ``hidden`` are left out; without ``hidden`` every
    task-list call is.
    """
    parts: list[str] = []
    if event.text:
        parts.append(event.text)
    for call in event.tools:
        skip = call.name == TASK_LIST_TOOL if hidden is None else call.id in hidden
        if skip:
            continue
        parts.append(format_tool_call(call))
    return "\n\n".join(parts)
