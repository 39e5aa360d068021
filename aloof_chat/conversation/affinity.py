from __future__ import annotations

from dataclasses import dataclass

from .models import AFFINITY_THRESHOLDS, SCORE_MAX, SCORE_MIN, AffinityTier


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def tier_for_score(score: int) -> AffinityTier:
    if score >= AFFINITY_THRESHOLDS[AffinityTier.FAVORED]:
        return AffinityTier.FAVORED
    if score >= AFFINITY_THRESHOLDS[AffinityTier.ACQUAINTANCE]:
        return AffinityTier.ACQUAINTANCE
    return AffinityTier.STRANGER


def delta_for_interest(interest_level: int) -> int:
    if interest_level <= 2:
        return -2
    if interest_level == 3:
        return -1
    if interest_level <= 6:
        return 1
    if interest_level <= 8:
        return 3
    return 5


@dataclass(frozen=True, slots=True)
class AffinityUpdate:
    old_score: int
    new_score: int
    delta: int
    old_tier: AffinityTier
    new_tier: AffinityTier
    tier_changed: bool


class AffinityEngine:
    def __init__(self, start_score: int = 10) -> None:
        self.start_score = _clamp(int(start_score), SCORE_MIN, SCORE_MAX)
        self._score = self.start_score

    @property
    def score(self) -> int:
        return self._score

    @property
    def tier(self) -> AffinityTier:
        return tier_for_score(self._score)

    def apply_delta(self, interest_level: int) -> AffinityUpdate:
        old_score = self._score
        old_tier = tier_for_score(old_score)
        delta = delta_for_interest(interest_level)
        new_score = _clamp(old_score + delta, SCORE_MIN, SCORE_MAX)
        new_tier = tier_for_score(new_score)
        self._score = new_score
        # Level-up is one-directional: a drop never signals, even across a boundary.
        tier_changed = new_tier > old_tier and new_score > old_score
        return AffinityUpdate(
            old_score=old_score,
            new_score=new_score,
            delta=delta,
            old_tier=old_tier,
            new_tier=new_tier,
            tier_changed=tier_changed,
        )

    def reset(self) -> None:
        self._score = self.start_score
