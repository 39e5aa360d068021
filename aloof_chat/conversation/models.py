from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Sender(str, Enum):
    USER = "user"
    BOT = "bot"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class AffinityTier(int, Enum):
    """Ordered affinity brackets; comparison follows Stranger < Acquaintance < Favored."""

    STRANGER = 0
    ACQUAINTANCE = 1
    FAVORED = 2

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]


_TIER_LABELS = {
    AffinityTier.STRANGER: "陌生",
    AffinityTier.ACQUAINTANCE: "熟识",
    AffinityTier.FAVORED: "偏爱",
}

AFFINITY_THRESHOLDS = {
    AffinityTier.ACQUAINTANCE: 30,
    AffinityTier.FAVORED: 80,
}

SCORE_MIN = 0
SCORE_MAX = 100


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class Message:
    id: str
    text: str
    sender: Sender
    timestamp: datetime = field(default_factory=utc_now)
    status: MessageStatus | None = None
    interest_level: int | None = None
    thoughts: str | None = None
    image: str | None = None

    @classmethod
    def from_user(cls, text: str, image: str | None = None) -> "Message":
        return cls(
            id=new_message_id(),
            text=text,
            sender=Sender.USER,
            status=MessageStatus.DELIVERED,
            image=image,
        )

    @classmethod
    def from_bot(cls, text: str, thoughts: str | None = None) -> "Message":
        return cls(id=new_message_id(), text=text, sender=Sender.BOT, thoughts=thoughts)

    @classmethod
    def from_system(cls, text: str, thoughts: str | None = None) -> "Message":
        return cls(id=new_message_id(), text=text, sender=Sender.SYSTEM, thoughts=thoughts)

    @property
    def is_unread_user_message(self) -> bool:
        return self.sender is Sender.USER and self.status is not MessageStatus.READ


@dataclass(frozen=True, slots=True)
class Verdict:
    interest_level: int
    thoughts: str
    replies: tuple[str, ...] = ()
    impression: str | None = None
