from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from .affinity import AffinityEngine
from .models import AffinityTier, Message
from .store import MessageStore


@dataclass(frozen=True, slots=True)
class LevelUpNotice:
    tier: AffinityTier
    score: int
    generation: int
    issued_at: float
    expires_at: float

    @property
    def lifetime_seconds(self) -> float:
        return max(0.0, self.expires_at - self.issued_at)

    def is_active(self, now: float, generation: int) -> bool:
        return generation == self.generation and now < self.expires_at


class ConversationSession:
    """Process-wide state of one conversation: log, affinity, impression.

    ``generation`` increases on every reset; turns remember the value they
    started with and drop their remaining effects once it moves on.
    """

    def __init__(
        self,
        *,
        greeting: str,
        default_impression: str,
        start_score: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.greeting = greeting
        self.default_impression = default_impression
        self.store = MessageStore(greeting)
        self.affinity = AffinityEngine(start_score)
        self.impression = default_impression
        self.generation = 0
        self._clock = clock
        self._notice: LevelUpNotice | None = None

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def update_impression(self, impression: str | None) -> bool:
        cleaned = (impression or "").strip()
        if not cleaned:
            return False
        self.impression = cleaned
        return True

    def issue_level_up(self, tier: AffinityTier, score: int, lifetime_seconds: float) -> LevelUpNotice:
        now = self._clock()
        notice = LevelUpNotice(
            tier=tier,
            score=score,
            generation=self.generation,
            issued_at=now,
            expires_at=now + lifetime_seconds,
        )
        self._notice = notice
        return notice

    def active_notice(self, now: float | None = None) -> LevelUpNotice | None:
        notice = self._notice
        if notice is None:
            return None
        moment = self._clock() if now is None else now
        if not notice.is_active(moment, self.generation):
            self._notice = None
            return None
        return notice

    def reset(self) -> Message:
        self.generation += 1
        self.affinity.reset()
        self.impression = self.default_impression
        self._notice = None
        return self.store.reset(self.greeting)
