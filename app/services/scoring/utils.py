"""Numeric helpers and the shared score-combination rules."""

from __future__ import annotations

import math
from typing import Mapping

from app.services.scoring.weights import OVERALL_WEIGHTS


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    if value is None or math.isnan(value):
        return low
    return max(low, min(high, value))


def sub_score(value: float) -> float:
    return round(clamp(value), 2)


def sigmoid(value: float, midpoint: float, steepness: float) -> float:
    return 1.0 / (1.0 + math.exp(-steepness * (value - midpoint)))


def log_normalize(value: float, base: float = 10.0) -> float:
    """log_base(value) scaled so 10^5 maps to 1.0."""
    if value <= 1:
        return 0.0
    return clamp(math.log(value, base) / 5.0, 0.0, 1.0)


def weighted_score(breakdown: Mapping[str, float], weights: Mapping[str, float]) -> int:
    total = sum(breakdown.get(name, 0.0) * weight for name, weight in weights.items())
    return int(round(clamp(total)))


def overall_score(beginner: float, complexity: float, contribution: float) -> int:
    total = (
        OVERALL_WEIGHTS["beginner"] * beginner
        + OVERALL_WEIGHTS["ease"] * (100 - complexity)
        + OVERALL_WEIGHTS["contribution"] * contribution
    )
    return int(round(clamp(total)))


def recommended_level(beginner: float, complexity: float) -> str:
    if beginner >= 70 and complexity <= 40:
        return "beginner"
    if complexity >= 70 or beginner <= 30:
        return "advanced"
    return "intermediate"


def latency_bucket(hours: float | None, buckets: tuple[tuple[float, float], ...], default: float) -> float:
    """First bucket score whose upper bound exceeds `hours`; `default` when unknown."""
    if hours is None:
        return default
    for upper, score in buckets:
        if hours < upper:
            return score
    return buckets[-1][1] if buckets else default
