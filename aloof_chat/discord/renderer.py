from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Sequence

import discord

from ..common import chunk_text
from ..conversation.models import Message, Sender
from ..conversation.session import LevelUpNotice
from ..prompts.persona import build_level_up_text
from .common import READ_RECEIPT_EMOJI, interest_emoji, spoiler

logger = logging.getLogger("aloof_chat")


class DiscordConversationRenderer:
    """Projects conversation events onto one Discord channel.

    User messages already exist on Discord; the renderer only needs their
    handles to add read receipts and debug reactions. Bot and system messages
    are sent as they are appended to the store.
    """

    def __init__(
        self,
        channel: discord.abc.Messageable,
        *,
        show_interest: bool = True,
        show_thoughts: bool = False,
    ) -> None:
        self.channel = channel
        self.show_interest = show_interest
        self.show_thoughts = show_thoughts
        self._incoming: discord.Message | None = None
        self._user_messages: dict[str, discord.Message] = {}
        self._typing_depth = 0
        self._typing_done: asyncio.Event | None = None
        self._typing_task: asyncio.Task[None] | None = None

    def expect_user_message(self, message: discord.Message) -> None:
        self._incoming = message

    def _with_thoughts(self, text: str, thoughts: str | None) -> str:
        if not self.show_thoughts or not thoughts:
            return text
        hidden = spoiler(f"💭 {thoughts}")
        return f"{text}\n-# {hidden}" if hidden else text

    async def _send(self, text: str, **kwargs: object) -> None:
        if not text.strip():
            logger.debug("Skipping empty outgoing message")
            return
        for chunk in chunk_text(text, 1900):
            await self.channel.send(chunk, **kwargs)  # type: ignore[arg-type]

    async def _react(self, message: discord.Message | None, emoji: str | None) -> None:
        if message is None or not emoji:
            return
        try:
            await message.add_reaction(emoji)
        except discord.HTTPException as exc:
            logger.debug("Reaction %s failed on message=%s: %s", emoji, message.id, exc)

    async def message_appended(self, message: Message) -> None:
        if message.sender is Sender.USER:
            if self._incoming is not None:
                self._user_messages[message.id] = self._incoming
                self._incoming = None
            return
        if message.sender is Sender.SYSTEM:
            await self._send(self._with_thoughts(f"*{message.text}*", message.thoughts))
            return
        await self._send(self._with_thoughts(message.text, message.thoughts))

    async def messages_read(self, messages: Sequence[Message]) -> None:
        for message in messages:
            await self._react(self._user_messages.get(message.id), READ_RECEIPT_EMOJI)

    async def message_annotated(self, message: Message) -> None:
        if not self.show_interest or message.sender is not Sender.USER:
            return
        await self._react(self._user_messages.get(message.id), interest_emoji(message.interest_level))

    async def _hold_typing(self, done: asyncio.Event) -> None:
        try:
            async with self.channel.typing():
                await done.wait()
        except discord.HTTPException as exc:
            logger.debug("Typing indicator failed: %s", exc)

    async def typing_started(self) -> None:
        self._typing_depth += 1
        if self._typing_depth > 1:
            return
        done = asyncio.Event()
        self._typing_done = done
        self._typing_task = asyncio.create_task(self._hold_typing(done), name="typing-indicator")

    async def typing_stopped(self) -> None:
        self._typing_depth = max(0, self._typing_depth - 1)
        if self._typing_depth > 0:
            return
        if self._typing_done is not None:
            self._typing_done.set()
        task, self._typing_task = self._typing_task, None
        self._typing_done = None
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def level_up(self, notice: LevelUpNotice) -> None:
        await self._send(
            build_level_up_text(notice.tier, notice.score),
            delete_after=notice.lifetime_seconds,
        )

    async def conversation_reset(self, greeting: Message) -> None:
        self._user_messages.clear()
        self._incoming = None
        await self._send(greeting.text)
