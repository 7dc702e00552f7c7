"""
Weighted aggregation + tier classification.

One implementation, parameterised by a weight table and a tier table, shared
by the KYC risk engine and the loan eligibility scorer.

Convention: inputs and output are 0-100 risk scores, HIGHER = RISKIER.
"""
from __future__ import annotations

import math
from typing import Generic, Mapping, Sequence, TypeVar

Level = TypeVar("Level")

SCORE_MIN = 0
SCORE_MAX = 100


def clamp_score(value: float) -> float:
    return max(float(SCORE_MIN), min(float(SCORE_MAX), value))


def round_half_up(value: float) -> int:
    # 54.5 -> 55, unlike round() which rounds half to even
    return int(math.floor(value + 0.5))


class WeightedAggregator(Generic[Level]):
    """
    Args:
        weights: factor name → weight; must sum to 1.0
        tiers:   (min_score, level) pairs; the first pair whose min_score the
                 score reaches wins, so they are kept in descending order
        floor_level: level for scores below every threshold
    """

    def __init__(
        self,
        weights: Mapping[str, float],
        tiers: Sequence[tuple[float, Level]],
        floor_level: Level,
    ):
        if abs(sum(weights.values()) - 1.0) > 1e-9:
            raise ValueError(f"Weights must sum to 1.0, got {sum(weights.values())}")
        if any(w < 0 for w in weights.values()):
            raise ValueError("Weights must be non-negative")

        self.weights = dict(weights)
        self.tiers = sorted(tiers, key=lambda t: t[0], reverse=True)
        self.floor_level = floor_level

    def aggregate(self, scores: Mapping[str, float]) -> int:
        """round(Σ score × weight), clamped to [0, 100]. Every weighted factor is required."""
        missing = [name for name in self.weights if name not in scores]
        if missing:
            raise ValueError(f"Missing factor scores: {', '.join(missing)}")

        total = sum(clamp_score(scores[name]) * weight for name, weight in self.weights.items())
        return round_half_up(clamp_score(total))

    def classify(self, score: float) -> Level:
        for threshold, level in self.tiers:
            if score >= threshold:
                return level
        return self.floor_level
