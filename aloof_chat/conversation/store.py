from __future__ import annotations

from dataclasses import replace
from typing import Callable, Iterator

from .models import Message, MessageStatus, Sender, new_message_id, utc_now


class MessageStore:
    """Ordered, append-only conversation log.

    Messages are never reordered or removed individually; only status and
    annotation fields change after an append. ``reset`` is the sole way to drop
    history and it always leaves exactly one fresh greeting behind.
    """

    def __init__(self, greeting: str) -> None:
        self._messages: list[Message] = []
        self._index: dict[str, int] = {}
        self.reset(greeting)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def messages(self) -> list[Message]:
        return list(self._messages)

    def get(self, message_id: str) -> Message | None:
        position = self._index.get(message_id)
        if position is None:
            return None
        return self._messages[position]

    def recent(self, limit: int) -> list[Message]:
        if limit <= 0:
            return []
        return list(self._messages[-limit:])

    def append(self, message: Message) -> str:
        if message.id in self._index:
            raise ValueError(f"Duplicate message id: {message.id}")
        self._index[message.id] = len(self._messages)
        self._messages.append(message)
        return message.id

    def update_status(self, predicate: Callable[[Message], bool], new_status: MessageStatus) -> list[Message]:
        changed: list[Message] = []
        for position, message in enumerate(self._messages):
            if not predicate(message):
                continue
            current = message.status
            if current is not None and current.rank >= new_status.rank:
                continue
            updated = replace(message, status=new_status)
            self._messages[position] = updated
            changed.append(updated)
        return changed

    def mark_user_messages_read(self) -> list[Message]:
        return self.update_status(lambda msg: msg.is_unread_user_message, MessageStatus.READ)

    def annotate(
        self,
        message_id: str,
        *,
        interest_level: int | None = None,
        thoughts: str | None = None,
    ) -> Message | None:
        position = self._index.get(message_id)
        if position is None:
            return None
        changes: dict[str, object] = {}
        if interest_level is not None:
            changes["interest_level"] = interest_level
        if thoughts is not None:
            changes["thoughts"] = thoughts
        if not changes:
            return self._messages[position]
        updated = replace(self._messages[position], **changes)
        self._messages[position] = updated
        return updated

    def reset(self, greeting: str) -> Message:
        greeting_message = Message(
            id=new_message_id(),
            text=greeting,
            sender=Sender.BOT,
            timestamp=utc_now(),
        )
        self._messages = [greeting_message]
        self._index = {greeting_message.id: 0}
        return greeting_message
