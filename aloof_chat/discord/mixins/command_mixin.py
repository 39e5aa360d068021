from __future__ import annotations

import logging

import discord

from ...common import collapse_spaces
from ...prompts.persona import persona_card, persona_name

logger = logging.getLogger("aloof_chat")

RESET_CONFIRM_WORDS = {"confirm", "yes", "y", "确定", "确认"}


class CommandMixin:
    async def _try_handle_system_command(self, message: discord.Message) -> bool:
        raw = collapse_spaces(message.content)
        if not raw:
            return False
        prefix = self.settings.command_prefix.strip()
        if not prefix or not raw.startswith(prefix):
            return False

        parts = raw[len(prefix) :].strip().split(" ", 1)
        command = parts[0].lower()
        argument = parts[1].strip().lower() if len(parts) > 1 else ""

        if command == "persona":
            await message.reply(f"**{persona_name()}**\n{persona_card()}")
            return True
        if command == "affinity":
            await self._reply_affinity(message)
            return True
        if command == "reset":
            await self._handle_reset(message, argument)
            return True
        return False

    async def _reply_affinity(self, message: discord.Message) -> None:
        conversation = self._conversation_for(message.channel)
        session = conversation.session
        tier = session.affinity.tier
        await message.reply(
            f"好感度：{session.affinity.score}/100（{tier.label}）\n印象：{session.impression}"
        )

    async def _handle_reset(self, message: discord.Message, argument: str) -> None:
        prefix = self.settings.command_prefix.strip()
        conversation = self._conversation_for(message.channel)

        if not argument:
            conversation.reset_pending = True
            await message.reply(f"确定要清空所有聊天记录重置对话吗？发送 `{prefix}reset confirm` 确认。")
            return

        if not conversation.reset_pending or argument not in RESET_CONFIRM_WORDS:
            conversation.reset_pending = False
            logger.info("[discord.reset] channel=%s declined", message.channel.id)
            await message.reply("已取消。")
            return

        conversation.reset_pending = False
        await conversation.orchestrator.reset()
