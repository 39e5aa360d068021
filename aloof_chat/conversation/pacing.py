from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class PacingProfile:
    read_delay_min_ms: int = 1500
    read_delay_max_ms: int = 6000
    reply_pause_min_ms: int = 200
    reply_pause_max_ms: int = 700
    typing_ms_per_char: int = 60
    typing_min_ms: int = 800
    typing_max_ms: int = 3000

    @classmethod
    def from_settings(cls, settings: Any) -> "PacingProfile":
        return cls(
            read_delay_min_ms=int(settings.read_delay_min_ms),
            read_delay_max_ms=int(settings.read_delay_max_ms),
            reply_pause_min_ms=int(settings.reply_pause_min_ms),
            reply_pause_max_ms=int(settings.reply_pause_max_ms),
            typing_ms_per_char=int(settings.typing_ms_per_char),
            typing_min_ms=int(settings.typing_min_ms),
            typing_max_ms=int(settings.typing_max_ms),
        )


class PacingSimulator:
    def __init__(self, rng: random.Random, profile: PacingProfile | None = None) -> None:
        self.rng = rng
        self.profile = profile or PacingProfile()

    def _uniform_ms(self, low: int, high: int) -> float:
        # random() is in [0, 1), which keeps the upper bound exclusive.
        return low + self.rng.random() * (high - low)

    def read_delay_ms(self) -> float:
        return self._uniform_ms(self.profile.read_delay_min_ms, self.profile.read_delay_max_ms)

    def inter_message_pause_ms(self) -> float:
        return self._uniform_ms(self.profile.reply_pause_min_ms, self.profile.reply_pause_max_ms)

    def typing_duration_ms(self, reply_text: str) -> int:
        raw = len(reply_text) * self.profile.typing_ms_per_char
        return max(self.profile.typing_min_ms, min(self.profile.typing_max_ms, raw))
