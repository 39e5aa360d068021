from __future__ import annotations

import asyncio
import contextlib
import logging
import random

import discord

from ..config import Settings
from ..conversation.gate import ReplyGate
from ..conversation.orchestrator import TurnOrchestrator
from ..conversation.pacing import PacingProfile, PacingSimulator
from ..conversation.session import ConversationSession
from ..prompts.persona import (
    default_impression,
    fallback_reply,
    fallback_thoughts,
    greeting_text,
    no_reply_placeholder,
    persona_name,
)
from ..services.gemini_client import GeminiClient
from ..services.oracle import GeminiOracle
from .common import ChannelConversation
from .mixins.command_mixin import CommandMixin
from .mixins.message_mixin import MessageMixin
from .renderer import DiscordConversationRenderer

logger = logging.getLogger("aloof_chat")


class AloofDiscordBot(
    CommandMixin,
    MessageMixin,
    discord.Client,
):
    def __init__(self, settings: Settings, llm: GeminiClient) -> None:
        intents = discord.Intents.default()
        intents.message_content = settings.discord_message_content_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.llm = llm
        self.oracle = GeminiOracle(llm, timezone=settings.persona_tzinfo())
        self.rng = random.Random(settings.random_seed or None)
        self.conversations: dict[int, ChannelConversation] = {}

    def _conversation_for(self, channel: discord.abc.Messageable) -> ChannelConversation:
        channel_id = int(getattr(channel, "id", 0))
        conversation = self.conversations.get(channel_id)
        if conversation is not None:
            return conversation

        settings = self.settings
        session = ConversationSession(
            greeting=greeting_text(),
            default_impression=default_impression(),
            start_score=settings.affinity_start_score,
        )
        renderer = DiscordConversationRenderer(
            channel,
            show_interest=settings.debug_show_interest,
            show_thoughts=settings.debug_show_thoughts,
        )
        orchestrator = TurnOrchestrator(
            session,
            self.oracle,
            ReplyGate(self.rng),
            PacingSimulator(self.rng, PacingProfile.from_settings(settings)),
            renderer,
            history_window=settings.history_window,
            impression_every=settings.impression_every_messages,
            level_up_seconds=settings.level_up_banner_seconds,
            placeholder_text=no_reply_placeholder(),
            fallback_thoughts=fallback_thoughts(),
            fallback_reply=fallback_reply(),
            label=str(channel_id),
        )
        conversation = ChannelConversation(session=session, orchestrator=orchestrator, renderer=renderer)
        self.conversations[channel_id] = conversation
        logger.info("[discord.session] channel=%s opened (score=%s)", channel_id, session.affinity.score)
        return conversation

    async def setup_hook(self) -> None:
        await self.llm.start()

    async def close(self) -> None:
        tasks = [task for conversation in self.conversations.values() for task in conversation.turn_tasks]
        for task in tasks:
            await self._cancel_task(task)

        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s), persona=%s", self.user, self.user.id, persona_name())
