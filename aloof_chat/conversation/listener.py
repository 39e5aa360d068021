from __future__ import annotations

from typing import Protocol, Sequence

from .models import Message
from .session import LevelUpNotice


class ConversationListener(Protocol):
    async def message_appended(self, message: Message) -> None:
        ...

    async def messages_read(self, messages: Sequence[Message]) -> None:
        ...

    async def message_annotated(self, message: Message) -> None:
        ...

    async def typing_started(self) -> None:
        ...

    async def typing_stopped(self) -> None:
        ...

    async def level_up(self, notice: LevelUpNotice) -> None:
        ...

    async def conversation_reset(self, greeting: Message) -> None:
        ...


class NullListener:
    async def message_appended(self, message: Message) -> None:
        return None

    async def messages_read(self, messages: Sequence[Message]) -> None:
        return None

    async def message_annotated(self, message: Message) -> None:
        return None

    async def typing_started(self) -> None:
        return None

    async def typing_stopped(self) -> None:
        return None

    async def level_up(self, notice: LevelUpNotice) -> None:
        return None

    async def conversation_reset(self, greeting: Message) -> None:
        return None
