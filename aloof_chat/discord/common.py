from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

from ..conversation.orchestrator import TurnOrchestrator
from ..conversation.session import ConversationSession

READ_RECEIPT_EMOJI = "👀"
MAX_IMAGE_BYTES = 8 * 1024 * 1024

_INTEREST_EMOJI = {
    1: "1️⃣",
    2: "2️⃣",
    3: "3️⃣",
    4: "4️⃣",
    5: "5️⃣",
    6: "6️⃣",
    7: "7️⃣",
    8: "8️⃣",
    9: "9️⃣",
    10: "🔟",
}


def interest_emoji(level: int | None) -> str | None:
    if level is None:
        return None
    return _INTEREST_EMOJI.get(int(level))


def to_data_uri(content_type: str, payload: bytes) -> str:
    encoded = base64.b64encode(payload).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def is_image_attachment(attachment: Any) -> bool:
    content_type = str(getattr(attachment, "content_type", "") or "").lower()
    return content_type.startswith("image/")


def spoiler(text: str) -> str:
    cleaned = text.replace("||", "|\u200b|").strip()
    return f"||{cleaned}||" if cleaned else ""


@dataclass(slots=True)
class ChannelConversation:
    session: ConversationSession
    orchestrator: TurnOrchestrator
    renderer: Any
    turn_tasks: set[Any] = field(default_factory=set)
    reset_pending: bool = False
