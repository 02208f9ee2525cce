from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from claude_agent_sdk import AssistantMessage, ResultMessage, SystemMessage, TextBlock, ToolUseBlock

from tether.agent import claude
from tether.agent.claude import ClaudeBackend, convert_message
from tether.agent.events import AssistantProse, AssistantToolUse, TerminalError, TerminalSuccess, ToolCall
from tether.errors import BackendError
from tether.sessions import CancellationToken, Session, SessionKey


def _result(**overrides: Any) -> ResultMessage:
    fields: dict[str, Any] = {
        "subtype": "success",
        "duration_ms": 1200,
        "duration_api_ms": 1000,
        "is_error": False,
        "num_turns": 1,
        "session_id": "sess-1",
        "total_cost_usd": 0.01,
        "result": "All done.",
    }
    fields.update(overrides)
    return ResultMessage(**fields)


def test_convert_prose_and_tool_use() -> None:
    prose = AssistantMessage(content=[TextBlock(text="Hello")], model="claude")
    tool_use = AssistantMessage(
        content=[TextBlock(text="Reading."), ToolUseBlock(id="t1", name="Read", input={"file_path": "/a"})],
        model="claude",
    )

    assert convert_message(prose) == AssistantProse(text="Hello")
    assert convert_message(tool_use) == AssistantToolUse(
        tools=(ToolCall(id="t1", name="Read", input={"file_path": "/a"}),), text="Reading."
    )
    assert convert_message(AssistantMessage(content=[], model="claude")) is None
    assert convert_message(SystemMessage(subtype="init", data={})) is None


def test_convert_results() -> None:
    assert convert_message(_result()) == TerminalSuccess(
        result="All done.", session_id="sess-1", cost_usd=0.01, duration_ms=1200
    )
    failed = convert_message(_result(subtype="error_max_turns", is_error=True, result=None))
    assert isinstance(failed, TerminalError)
    assert failed.message == "agent run ended with error_max_turns"


def _session() -> Session:
    return Session(key=SessionKey("u1", "c1", "t1"))


@pytest.mark.asyncio
async def test_stream_records_session_and_yields_events(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen: list[Any] = []

    async def fake_query(*, prompt: str, options: Any) -> AsyncIterator[Any]:
        seen.append((prompt, options))
        yield SystemMessage(subtype="init", data={"session_id": "sess-1"})
        yield AssistantMessage(content=[TextBlock(text="Hi")], model="claude")
        yield _result()

    monkeypatch.setattr(claude, "query", fake_query)
    session = _session()
    backend = ClaudeBackend(model="sonnet", system_prompt="Be brief.")

    events = [event async for event in backend.stream("hello", session, CancellationToken(), tmp_path)]

    assert [type(event) for event in events] == [AssistantProse, TerminalSuccess]
    assert session.session_id == "sess-1"
    prompt, options = seen[0]
    assert prompt == "hello"
    assert options.cwd == tmp_path
    assert options.resume is None
    assert options.model == "sonnet"
    assert options.system_prompt["append"] == "Be brief."


@pytest.mark.asyncio
async def test_stream_resumes_known_session(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen: list[Any] = []

    async def fake_query(*, prompt: str, options: Any) -> AsyncIterator[Any]:
        seen.append(options)
        yield _result(session_id="sess-2")

    monkeypatch.setattr(claude, "query", fake_query)
    session = _session()
    session.session_id = "sess-1"

    events = [event async for event in ClaudeBackend().stream("again", session, CancellationToken(), tmp_path)]

    assert len(events) == 1
    assert seen[0].resume == "sess-1"
    assert session.session_id == "sess-2"


@pytest.mark.asyncio
async def test_stream_wraps_sdk_failures(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    async def fake_query(*, prompt: str, options: Any) -> AsyncIterator[Any]:
        yield AssistantMessage(content=[TextBlock(text="Hi")], model="claude")
        raise RuntimeError("process exited")

    monkeypatch.setattr(claude, "query", fake_query)
    events: list[Any] = []

    with pytest.raises(BackendError, match="process exited"):
        async for event in ClaudeBackend().stream("hello", _session(), CancellationToken(), tmp_path):
            events.append(event)
    assert events == [AssistantProse(text="Hi")]


@pytest.mark.asyncio
async def test_stream_stops_when_cancelled(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    token = CancellationToken()

    async def fake_query(*, prompt: str, options: Any) -> AsyncIterator[Any]:
        yield AssistantMessage(content=[TextBlock(text="first")], model="claude")
        token.cancel()
        yield AssistantMessage(content=[TextBlock(text="second")], model="claude")

    monkeypatch.setattr(claude, "query", fake_query)

    events = [event async for event in ClaudeBackend().stream("hello", _session(), token, tmp_path)]

    assert events == [AssistantProse(text="first")]
