"""Configuration management for tether."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_MESSAGE_LENGTH = 39000


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TETHER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Discord transport
    discord_token: str | None = Field(default=None, description="Discord bot token")
    discord_allow_from: list[str] = Field(default_factory=list, description="User ids or names allowed to talk")
    discord_allow_channels: list[str] = Field(default_factory=list, description="Channel ids the bot listens on")
    discord_command_prefix: str = Field(default="!", description="Prefix for bot commands")
    discord_proxy: str | None = Field(default=None, description="Explicit HTTP proxy for the Discord client")

    # Agent backend
    base_directory: Path | None = Field(default=None, description="Working directory handed to the agent")
    model: str | None = Field(default=None, description="Model override for the agent backend")
    permission_mode: str = Field(default="bypassPermissions", description="Agent tool permission mode")
    system_prompt: str | None = Field(default=None, description="Extra system prompt appended for the agent")

    # Turn rendering and session lifecycle
    max_message_length: int = Field(default=DEFAULT_MAX_MESSAGE_LENGTH, gt=0)
    cleanup_delay_seconds: float = Field(default=300.0, ge=0)
    session_timeout_seconds: float = Field(default=1800.0, gt=0)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    cancel_grace_seconds: float = Field(default=5.0, ge=0)

    log_level: str = Field(default="INFO", description="Log level")

    def resolve_workspace(self) -> Path:
        if self.base_directory is None:
            return Path.cwd()
        return self.base_directory.expanduser().resolve()


def load_settings(workspace: Path | None = None) -> Settings:
    """Load settings from the environment and an optional ``.env`` in the workspace."""
    if workspace is None:
        return Settings()
    env_file = workspace / ".env"
    settings = Settings(_env_file=env_file if env_file.is_file() else None)  # type: ignore[call-arg]
    if settings.base_directory is None:
        settings = settings.model_copy(update={"base_directory": workspace})
    return settings
