from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Sequence

from .models import AffinityTier

SUPPRESSION_TABLE: dict[int, dict[AffinityTier, float]] = {
    2: {
        AffinityTier.STRANGER: 0.60,
        AffinityTier.ACQUAINTANCE: 0.40,
        AffinityTier.FAVORED: 0.20,
    },
    3: {
        AffinityTier.STRANGER: 0.30,
        AffinityTier.ACQUAINTANCE: 0.15,
        AffinityTier.FAVORED: 0.05,
    },
}


@dataclass(frozen=True, slots=True)
class GateDecision:
    replies: tuple[str, ...]
    thoughts: str
    suppressed: bool
    roll: float | None = None
    probability: float | None = None


class ReplyGate:
    """Decides whether the persona answers at all, given interest and tier.

    Level 1 is a hard no-reply. Levels 2 and 3 draw one uniform sample per turn
    against the tier's suppression probability. Anything from 4 up passes the
    oracle's replies through untouched. Every branch appends a short trace to
    ``thoughts`` for humans reading logs.
    """

    def __init__(self, rng: random.Random) -> None:
        self.rng = rng

    @staticmethod
    def suppression_probability(interest_level: int, tier: AffinityTier) -> float:
        if interest_level <= 1:
            return 1.0
        row = SUPPRESSION_TABLE.get(interest_level)
        if row is None:
            return 0.0
        return row[tier]

    def decide(
        self,
        interest_level: int,
        tier: AffinityTier,
        replies: Sequence[str],
        thoughts: str,
    ) -> GateDecision:
        proposed = tuple(replies)

        if interest_level <= 1:
            trace = f" [gate: level {interest_level} forced no-reply]"
            return GateDecision(replies=(), thoughts=thoughts + trace, suppressed=True, probability=1.0)

        probability = self.suppression_probability(interest_level, tier)
        if probability <= 0.0:
            trace = f" [gate: level {interest_level} passes through]"
            return GateDecision(replies=proposed, thoughts=thoughts + trace, suppressed=False, probability=0.0)

        roll = self.rng.random()
        if roll < probability:
            trace = (
                f" [gate: level {interest_level} roll {roll:.2f} < {probability:.2f} "
                f"({tier.label}), replies suppressed]"
            )
            return GateDecision(
                replies=(),
                thoughts=thoughts + trace,
                suppressed=True,
                roll=roll,
                probability=probability,
            )

        trace = (
            f" [gate: level {interest_level} roll {roll:.2f} >= {probability:.2f} "
            f"({tier.label}), replies allowed]"
        )
        return GateDecision(
            replies=proposed,
            thoughts=thoughts + trace,
            suppressed=False,
            roll=roll,
            probability=probability,
        )
