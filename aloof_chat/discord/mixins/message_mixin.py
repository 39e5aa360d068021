from __future__ import annotations

import asyncio
import logging
import re

import discord

from ...common import collapse_spaces, truncate
from ..common import MAX_IMAGE_BYTES, ChannelConversation, is_image_attachment, to_data_uri

logger = logging.getLogger("aloof_chat")


class MessageMixin:
    def _should_auto_reply(self, message: discord.Message) -> bool:
        if message.guild is None or message.channel.id in self.settings.auto_reply_channel_ids:
            return True
        if self.user is not None and self.user.mentioned_in(message):
            return True
        return not self.settings.mention_only

    def _strip_bot_mention(self, text: str) -> str:
        if self.user is not None:
            text = re.sub(rf"<@!?{self.user.id}>", " ", text)
        return collapse_spaces(text)

    async def _read_image(self, message: discord.Message) -> str | None:
        for attachment in message.attachments:
            if not is_image_attachment(attachment):
                continue
            if attachment.size > MAX_IMAGE_BYTES:
                logger.info(
                    "Skipping oversized image attachment (%s bytes) in channel=%s",
                    attachment.size,
                    message.channel.id,
                )
                continue
            try:
                payload = await attachment.read()
            except discord.HTTPException as exc:
                logger.warning("Failed to download attachment %s: %s", attachment.id, exc)
                continue
            return to_data_uri(str(attachment.content_type).split(";", 1)[0], payload)
        return None

    async def _run_turn(
        self,
        conversation: ChannelConversation,
        message: discord.Message,
        text: str,
        image: str | None,
    ) -> None:
        conversation.renderer.expect_user_message(message)
        try:
            outcome = await conversation.orchestrator.submit(text, image)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Text turn failed: %s", exc)
            return
        if outcome is None:
            return
        logger.debug(
            "[turn.settled] channel=%s turn=%s appended=%s discarded=%s",
            message.channel.id,
            outcome.turn_id,
            len(outcome.appended_ids),
            outcome.discarded,
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if await self._try_handle_system_command(message):
            return
        if not self._should_auto_reply(message):
            return

        user_text = self._strip_bot_mention(message.content)
        image = await self._read_image(message)
        if not user_text and image is None:
            return

        conversation = self._conversation_for(message.channel)
        conversation.reset_pending = False
        logger.info(
            "[discord.in] channel=%s user=%s text=\"%s\"",
            message.channel.id,
            getattr(message.author, "display_name", message.author.name),
            truncate(user_text, 80),
        )
        task = asyncio.create_task(
            self._run_turn(conversation, message, user_text, image),
            name=f"turn-{message.channel.id}-{message.id}",
        )
        conversation.turn_tasks.add(task)
        task.add_done_callback(conversation.turn_tasks.discard)
