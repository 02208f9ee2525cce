"""Chat rendering of agent turns."""

from tether.render.formatting import format_message, format_tool_call, format_tool_use
from tether.render.renderer import ResponseRenderer

__all__ = ["ResponseRenderer", "format_message", "format_tool_call", "format_tool_use"]
