"""tether CLI."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

import typer
from loguru import logger

from tether.agent.claude import ClaudeBackend
from tether.app.runtime import AppRuntime
from tether.channels.bus import MessageBus
from tether.channels.discord import DiscordChannel, DiscordConfig
from tether.channels.manager import ChannelManager
from tether.config import Settings, load_settings
from tether.errors import ConfigurationError
from tether.logging_utils import configure_logging

app = typer.Typer(name="tether", help="Stream coding-agent turns into chat threads.", add_completion=False)


def _validate(settings: Settings) -> None:
    if not settings.discord_token:
        raise ConfigurationError("TETHER_DISCORD_TOKEN is not set")
    workspace = settings.resolve_workspace()
    if not workspace.is_dir():
        raise ConfigurationError(f"workspace {workspace} does not exist")


async def _serve(settings: Settings) -> None:
    backend = ClaudeBackend(
        model=settings.model,
        permission_mode=settings.permission_mode,
        system_prompt=settings.system_prompt,
    )
    bus = MessageBus()
    channel = DiscordChannel(DiscordConfig.from_settings(settings))
    with AppRuntime(settings, backend) as runtime:
        manager = ChannelManager(bus, runtime)
        manager.register(channel)

        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_event.set)

        await manager.start()
        logger.info("tether.serve channels={} workspace={}", list(manager.enabled_channels()), runtime.workspace)
        channels_done = asyncio.ensure_future(manager.wait())
        stopped = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({channels_done, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            logger.info("tether.shutdown {}", channel.describe())
            await manager.stop()
            channels_done.cancel()


@app.command()
def run(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Working directory for the agent."),
    model: str | None = typer.Option(None, "--model", help="Model override for the agent."),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level, e.g. DEBUG."),
    pretty: bool = typer.Option(False, "--pretty", help="Render logs with rich."),
) -> None:
    """Connect to Discord and serve agent turns until interrupted."""
    settings = load_settings(workspace.resolve() if workspace else None)
    if model:
        settings = settings.model_copy(update={"model": model})
    configure_logging(profile="chat" if pretty else "default", level=log_level or settings.log_level)
    try:
        _validate(settings)
    except ConfigurationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(1) from exc
    asyncio.run(_serve(settings))


@app.command("check")
def check(workspace: Path | None = typer.Option(None, "--workspace", "-w")) -> None:
    """Validate configuration without connecting."""
    settings = load_settings(workspace.resolve() if workspace else None)
    try:
        _validate(settings)
    except ConfigurationError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(1) from exc
    typer.echo(f"ok: workspace={settings.resolve_workspace()} max_message_length={settings.max_message_length}")
