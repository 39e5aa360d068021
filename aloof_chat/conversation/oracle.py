from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence

from .models import AffinityTier, Message, Verdict, utc_now


class OracleError(RuntimeError):
    """The oracle call produced no usable verdict."""


@dataclass(frozen=True, slots=True)
class OracleRequest:
    history: tuple[Message, ...]
    latest_text: str
    latest_image: str | None = None
    affinity_score: int = 10
    affinity_tier: AffinityTier = AffinityTier.STRANGER
    impression: str = ""
    request_impression: bool = False
    current_time: datetime = field(default_factory=utc_now)


class Oracle(Protocol):
    async def evaluate(self, request: OracleRequest) -> Verdict:
        ...


def history_window(messages: Sequence[Message], limit: int) -> tuple[Message, ...]:
    if limit <= 0:
        return ()
    return tuple(messages[-limit:])
