from tether.agent.events import AssistantToolUse, ToolCall
from tether.render.formatting import format_message, format_tool_call, format_tool_use, truncate


def test_format_message_converts_markdown() -> None:
    text = "**Bold** and __under__\n```python\nprint(1)\n```"

    assert format_message(text) == "*Bold* and _under_\n```print(1)\n```"


def test_truncate() -> None:
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"
    assert truncate(None, 3) == ""


def test_edit_renders_header_and_diff() -> None:
    call = ToolCall(id="t1", name="Edit", input={"file_path": "/a.py", "old_string": "foo", "new_string": "bar"})

    rendered = format_tool_call(call)

    assert rendered == "📝 *Editing `/a.py`*\n\n```diff\n-foo\n+bar\n```"


def test_multi_edit_renders_every_hunk() -> None:
    call = ToolCall(
        id="t1",
        name="MultiEdit",
        input={
            "file_path": "/a.py",
            "edits": [{"old_string": "a", "new_string": "b"}, {"old_string": "c", "new_string": "d"}],
        },
    )

    rendered = format_tool_call(call)

    assert rendered.count("```diff") == 2
    assert "-a\n+b" in rendered
    assert "-c\n+d" in rendered


def test_write_preview_is_truncated() -> None:
    call = ToolCall(id="t1", name="Write", input={"file_path": "/big.txt", "content": "x" * 500})

    rendered = format_tool_call(call)

    assert rendered.startswith("📄 *Creating `/big.txt`*\n```\n")
    assert "x" * 300 + "..." in rendered
    assert "x" * 301 not in rendered


def test_read_and_bash() -> None:
    assert format_tool_call(ToolCall(id="t", name="Read", input={"file_path": "/r.md"})) == "👁️ *Reading `/r.md`*"
    assert format_tool_call(ToolCall(id="t", name="Bash", input={"command": "ls"})) == (
        "🖥️ *Running command:*\n```bash\nls\n```"
    )


def test_malformed_input_falls_back_to_generic() -> None:
    assert format_tool_call(ToolCall(id="t", name="Edit", input={"file_path": "/a.py"})) == "🔧 *Using Edit*"
    assert format_tool_call(ToolCall(id="t", name="WebSearch", input={"query": "x"})) == "🔧 *Using WebSearch*"


def test_tool_use_skips_task_list_calls() -> None:
    event = AssistantToolUse(
        text="Let me look.",
        tools=(
            ToolCall(id="t1", name="TodoWrite", input={"todos": []}),
            ToolCall(id="t2", name="Read", input={"file_path": "/r.md"}),
        ),
    )

    assert format_tool_use(event) == "Let me look.\n\n👁️ *Reading `/r.md`*"
    assert format_tool_use(AssistantToolUse(tools=(ToolCall(id="t1", name="TodoWrite"),))) == ""


def test_tool_use_hides_only_given_calls() -> None:
    event = AssistantToolUse(
        tools=(
            ToolCall(id="t1", name="TodoWrite", input={"todos": "oops"}),
            ToolCall(id="t2", name="TodoWrite", input={"todos": []}),
        ),
    )

    assert format_tool_use(event, hidden={"t2"}) == "🔧 *Using TodoWrite*"
    assert format_tool_use(event, hidden={"t1", "t2"}) == ""
