"""Application-level exception types for tether."""

from __future__ import annotations


class TetherError(Exception):
    """Base exception for tether."""


class ConfigurationError(TetherError):
    """Raised for configuration and startup validation errors."""


class TransportError(TetherError):
    """Raised when posting, updating or reacting on the chat surface fails."""


class BackendError(TetherError):
    """Raised when the agent backend stream fails for a reason other than cancellation."""


class FormatError(TetherError):
    """Raised when a tool input does not have the expected shape."""


class ExecutionCancelled(TetherError):
    """Raised when a turn observes that it was superseded."""
