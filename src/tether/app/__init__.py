"""Application runtime exports."""

from tether.app.runtime import AppRuntime, compose_prompt

__all__ = ["AppRuntime", "compose_prompt"]
