"""Agent backend events and adapters."""

from tether.agent.backend import AgentBackend
from tether.agent.events import (
    AgentEvent,
    AssistantProse,
    AssistantToolUse,
    TerminalError,
    TerminalSuccess,
    ToolCall,
)

__all__ = [
    "AgentBackend",
    "AgentEvent",
    "AssistantProse",
    "AssistantToolUse",
    "TerminalError",
    "TerminalSuccess",
    "ToolCall",
]
