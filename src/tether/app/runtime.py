"""Application runtime: owns the session registry and runs turns for inbound messages."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import suppress
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from loguru import logger

from tether.agent.backend import AgentBackend
from tether.channels.base import ChatTransport
from tether.channels.events import Attachment, InboundMessage
from tether.config import Settings
from tether.dispatcher import StreamDispatcher, TurnState
from tether.redact import SecretMasker
from tether.sessions import SessionRegistry

SWEEP_JOB_ID = "tether.sessions.sweep"


def compose_prompt(text: str, attachments: Sequence[Attachment]) -> str:
    """Append a listing of uploaded files, with their local paths, to the user's text."""
    if not attachments:
        return text
    header = "The user uploaded the following file(s):"
    lines = [text.strip(), "", header] if text.strip() else [header]
    for attachment in attachments:
        details = ", ".join(part for part in (attachment.content_type, f"{attachment.size} bytes") if part)
        lines.append(f"- {attachment.name} ({details}) at {attachment.path}")
    return "\n".join(lines)


class AppRuntime:
    """Global runtime that serves every conversation thread."""

    def __init__(
        self,
        settings: Settings,
        backend: AgentBackend,
        *,
        scheduler: BaseScheduler | None = None,
        masker: SecretMasker | None = None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.scheduler = scheduler or AsyncIOScheduler()
        self.masker = masker or SecretMasker.from_environ()
        self.masker.register(settings.discord_token)
        self.registry = SessionRegistry(
            self.scheduler,
            cleanup_delay_seconds=settings.cleanup_delay_seconds,
            session_timeout_seconds=settings.session_timeout_seconds,
        )

    def __enter__(self) -> AppRuntime:
        if not self.scheduler.get_job(SWEEP_JOB_ID):
            self.scheduler.add_job(
                self._sweep_sessions,
                trigger="interval",
                seconds=self.settings.sweep_interval_seconds,
                id=SWEEP_JOB_ID,
                replace_existing=True,
            )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("runtime.start known_secrets={}", self.masker.known_count)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
        if self.scheduler.running:
            with suppress(Exception):
                self.scheduler.shutdown(wait=False)

    async def _sweep_sessions(self) -> None:
        logger.debug("runtime.sweep sessions={}", len(self.registry.sessions))
        self.registry.sweep_inactive()

    def shutdown(self) -> None:
        self.registry.cancel_all()

    async def handle_inbound(self, message: InboundMessage, transport: ChatTransport) -> TurnState | None:
        """Run one turn for ``message``; returns its terminal state, or None when ignored."""
        if not message.content and not message.attachments:
            return None
        bot_id = await transport.bot_identity()
        if bot_id and message.sender_id == bot_id:
            return None

        logger.debug(
            "runtime.inbound channel={} conversation_id={} thread={} sender_id={} content={} files={}",
            message.channel,
            message.conversation_id,
            message.thread_root,
            message.sender_id,
            message.content[:100],
            len(message.attachments),
        )
        if message.attachments:
            names = ", ".join(attachment.name for attachment in message.attachments)
            await self._notify(
                transport,
                message,
                f"📎 Processing {len(message.attachments)} file(s): {names}",
            )

        key = self.registry.key_for(message.sender_id, message.conversation_id, message.thread_root)
        session = self.registry.resolve(key)
        execution = self.registry.start_execution(key)
        execution.artifacts.extend(attachment.path for attachment in message.attachments)
        try:
            if execution.previous is not None:
                finished = await execution.previous.wait_finished(self.settings.cancel_grace_seconds)
                if not finished:
                    logger.warning("runtime.supersede.timeout key={}", key)
            if execution.token.cancelled:
                # Superseded again while waiting for the previous turn.
                execution.cleanup_artifacts()
                return TurnState.CANCELLED

            self.registry.reactions(key).retarget(message.source)
            dispatcher = StreamDispatcher(
                transport=transport,
                backend=self.backend,
                registry=self.registry,
                masker=self.masker,
                session=session,
                execution=execution,
                conversation_id=message.conversation_id,
                thread_id=message.thread_root,
                cwd=self.workspace,
                limit=min(self.settings.max_message_length, transport.max_message_length),
            )
            return await dispatcher.run(compose_prompt(message.content, message.attachments))
        finally:
            self.registry.end_execution(key, execution)
            execution.mark_finished()

    @property
    def workspace(self) -> Path:
        return self.settings.resolve_workspace()

    async def _notify(self, transport: ChatTransport, message: InboundMessage, text: str) -> None:
        try:
            await transport.post_message(
                message.conversation_id, self.masker.mask_text(text), thread_id=message.thread_root
            )
        except Exception:
            logger.exception("runtime.notify.failed conversation_id={}", message.conversation_id)
