"""
aggregation/classification.py - Performance classification

Maps a task completion rate (percent) to one of five ranking buckets.

THRESHOLDS (after clamping to [0, 100]):
    100       EXCELLENT
    95 - <100 GOOD
    90 - <95  AVERAGE
    85 - <90  POOR
    <85       FAIL
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List
import math


class RankingBucket(str, Enum):
    """Ranking bucket for a completion rate."""
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"
    FAIL = "fail"


# Display order, best first
BUCKET_ORDER: List[RankingBucket] = [
    RankingBucket.EXCELLENT,
    RankingBucket.GOOD,
    RankingBucket.AVERAGE,
    RankingBucket.POOR,
    RankingBucket.FAIL,
]


@dataclass(frozen=True)
class PerformanceLevel:
    """Display metadata for a bucket."""
    bucket: RankingBucket
    label: str
    label_en: str
    color: str
    min_percentage: int
    max_percentage: int
    description: str = ""


PERFORMANCE_LEVELS: Dict[RankingBucket, PerformanceLevel] = {
    RankingBucket.EXCELLENT: PerformanceLevel(
        RankingBucket.EXCELLENT, "GIỎI", "EXCELLENT", "#d946ef", 100, 100,
        "Outstanding completion",
    ),
    RankingBucket.GOOD: PerformanceLevel(
        RankingBucket.GOOD, "KHÁ", "GOOD", "#22c55e", 95, 99,
        "Good completion",
    ),
    RankingBucket.AVERAGE: PerformanceLevel(
        RankingBucket.AVERAGE, "TB", "AVERAGE", "#eab308", 90, 94,
        "Average completion",
    ),
    RankingBucket.POOR: PerformanceLevel(
        RankingBucket.POOR, "YẾU", "POOR", "#f97316", 85, 89,
        "Needs improvement",
    ),
    RankingBucket.FAIL: PerformanceLevel(
        RankingBucket.FAIL, "KÉM", "FAIL", "#dc2626", 0, 84,
        "Needs immediate improvement",
    ),
}


def clamp_rate(rate: float) -> float:
    """Clamp to [0, 100]; NaN counts as 0."""
    if rate is None or math.isnan(rate):
        return 0.0
    return max(0.0, min(100.0, float(rate)))


def classify(rate: float) -> RankingBucket:
    rate = clamp_rate(rate)
    if rate == 100:
        return RankingBucket.EXCELLENT
    if rate >= 95:
        return RankingBucket.GOOD
    if rate >= 90:
        return RankingBucket.AVERAGE
    if rate >= 85:
        return RankingBucket.POOR
    return RankingBucket.FAIL


def performance_level(rate: float) -> PerformanceLevel:
    return PERFORMANCE_LEVELS[classify(rate)]
