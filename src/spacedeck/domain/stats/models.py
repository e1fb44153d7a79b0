"""
Domain models for deck scoring.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from spacedeck.domain.constants import SCORE_WINDOW_DAYS


class ScoreWindow(str, Enum):
    D7 = "d7"
    D30 = "d30"
    D90 = "d90"

    @property
    def days(self) -> int:
        return SCORE_WINDOW_DAYS[self.value]


@dataclass(frozen=True)
class DeckScore:
    """
    Rolling performance of one learner on one deck.

    Attributes:
        accuracy_pct: Accuracy in [0, 1]. EMA for d30, plain ratio for batch windows.
        stability_avg: Stability of the latest review (d30) or window mean (batch).
        lapses: Again ratings counted for this row.
        updated_at: Time of the last write.
    """

    id: str
    user_id: str
    deck_id: str
    window: ScoreWindow
    accuracy_pct: float
    stability_avg: float
    lapses: int
    updated_at: datetime


@dataclass(frozen=True)
class WindowStats:
    """Aggregates of a deck's review log over a time window."""

    total_reviews: int
    correct_reviews: int
    avg_stability: float
    lapses: int


@dataclass(frozen=True)
class Grade:
    key: str
    label: str
    color: str


@dataclass(frozen=True)
class LoadWarning:
    """Advisory emitted when today's review volume runs above normal."""

    reason: str  # "above_average" or "high_volume"
    today_count: int
    daily_average: float
    message: str
