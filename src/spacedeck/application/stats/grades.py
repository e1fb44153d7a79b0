"""
Grade classifier.

Maps an accuracy value to a letter grade with a display color. Pure lookup;
the minimum-sample policy belongs to the caller (see deck_performance).
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from spacedeck.domain.constants import GRADE_MIN_REVIEWS
from spacedeck.domain.scheduling.models import Rating
from spacedeck.domain.stats.models import DeckScore, Grade


@dataclass(frozen=True)
class GradeBand:
    key: str
    label: str
    color: str
    min_pct: float  # inclusive lower bound, 0-100


@dataclass(frozen=True)
class GradeScale:
    """Bands ordered from highest to lowest threshold; the last band is the floor."""

    bands: tuple[GradeBand, ...]

    def __post_init__(self):
        if not self.bands:
            raise ValueError("GradeScale needs at least one band")
        thresholds = [b.min_pct for b in self.bands]
        if thresholds != sorted(thresholds, reverse=True):
            raise ValueError("Grade bands must be ordered from highest to lowest threshold")


DEFAULT_GRADE_SCALE = GradeScale(
    bands=(
        GradeBand("A_PLUS", "A+", "#16a34a", 97.0),
        GradeBand("A", "A", "#22c55e", 93.0),
        GradeBand("B", "B", "#3b82f6", 85.0),
        GradeBand("C", "C", "#eab308", 70.0),
        GradeBand("D", "D", "#f97316", 60.0),
        GradeBand("F", "F", "#ef4444", 0.0),
    )
)


def to_percent(accuracy: float) -> float:
    """
    Normalize an accuracy to 0-100.

    Values in [0, 1] are fractions; anything above 1 is already a percentage.
    """
    if not math.isfinite(accuracy):
        raise ValueError(f"accuracy must be finite, got {accuracy}")
    if 0.0 <= accuracy <= 1.0:
        # rounding keeps 0.57 -> 57.0 instead of 56.99999999999999
        return round(accuracy * 100.0, 9)
    return accuracy


def classify(accuracy: float, scale: GradeScale = DEFAULT_GRADE_SCALE) -> Grade:
    """Grade for an accuracy given as a 0..1 fraction or a 0..100 percentage."""
    pct = to_percent(accuracy)
    for band in scale.bands:
        if pct >= band.min_pct:
            return Grade(key=band.key, label=band.label, color=band.color)
    floor = scale.bands[-1]
    return Grade(key=floor.key, label=floor.label, color=floor.color)


def best_grade(
    scores: Iterable[DeckScore], scale: GradeScale = DEFAULT_GRADE_SCALE
) -> Grade | None:
    """Grade of the best accuracy across several score windows."""
    accuracies = [s.accuracy_pct for s in scores]
    if not accuracies:
        return None
    return classify(max(accuracies), scale)


@dataclass(frozen=True)
class DeckPerformance:
    review_count: int
    success_rate: float | None  # fraction, None with insufficient data
    grade: Grade | None

    @property
    def insufficient_data(self) -> bool:
        return self.grade is None


def deck_performance(
    recent: Sequence[Rating],
    min_reviews: int = GRADE_MIN_REVIEWS,
    scale: GradeScale = DEFAULT_GRADE_SCALE,
) -> DeckPerformance:
    """
    Grade a deck from its most recent ratings.

    Below `min_reviews` ratings no grade is given.
    """
    if len(recent) < min_reviews or not recent:
        return DeckPerformance(review_count=len(recent), success_rate=None, grade=None)

    successes = sum(1 for r in recent if r in (Rating.GOOD, Rating.EASY))
    rate = successes / len(recent)
    return DeckPerformance(review_count=len(recent), success_rate=rate, grade=classify(rate, scale))
