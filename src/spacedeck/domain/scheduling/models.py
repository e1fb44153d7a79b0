"""
Domain models for the memory model.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any

from spacedeck.domain.constants import (
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_LEARNING_STEPS_MINUTES,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_PARAMETERS_VERSION,
    DEFAULT_RELEARNING_STEPS_MINUTES,
    DEFAULT_WEIGHTS,
    WEIGHT_COUNT,
)
from spacedeck.domain.errors import ValidationError


class Rating(IntEnum):
    """Recall rating submitted by the learner (1=Again, 2=Hard, 3=Good, 4=Easy)."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "Rating | str | int") -> "Rating":
        """Parse a wire value ("good", 3, Rating.GOOD) into a Rating."""
        if isinstance(value, Rating):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValidationError(f"Invalid rating: {value!r}", field="rating") from None
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError(f"Invalid rating: {value!r}", field="rating") from None
        raise ValidationError(f"Invalid rating: {value!r}", field="rating")


class CardState(IntEnum):
    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class MemoryState:
    """
    Memory state of one card for one learner.

    Attributes:
        stability: Days until recall probability decays to 90%.
        difficulty: Intrinsic hardness on a 1-10 scale (0 while New).
        elapsed_days: Days since the previous review, at the time of the latest one.
        scheduled_days: Interval scheduled by the latest review (0 for sub-day steps).
        reps: Total number of reviews.
        lapses: Number of reviews rated Again.
        state: New, Learning, Review or Relearning.
        learning_steps: Index of the current (re)learning step.
        due: Next scheduled review time.
        last_review: Time of the latest review, None while New.
    """

    stability: float
    difficulty: float
    elapsed_days: int
    scheduled_days: int
    reps: int
    lapses: int
    state: CardState
    learning_steps: int
    due: datetime
    last_review: datetime | None = None

    @classmethod
    def new(cls, now: datetime | None = None) -> "MemoryState":
        """Default state of a card that has never been reviewed."""
        return cls(
            stability=0.0,
            difficulty=0.0,
            elapsed_days=0,
            scheduled_days=0,
            reps=0,
            lapses=0,
            state=CardState.NEW,
            learning_steps=0,
            due=ensure_utc(now or utcnow()),
        )

    def evolve(self, **changes: Any) -> "MemoryState":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stability": self.stability,
            "difficulty": self.difficulty,
            "elapsed_days": self.elapsed_days,
            "scheduled_days": self.scheduled_days,
            "reps": self.reps,
            "lapses": self.lapses,
            "state": int(self.state),
            "learning_steps": self.learning_steps,
            "due": self.due.isoformat(),
            "last_review": self.last_review.isoformat() if self.last_review else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryState":
        last_review = data.get("last_review")
        return cls(
            stability=float(data["stability"]),
            difficulty=float(data["difficulty"]),
            elapsed_days=int(data["elapsed_days"]),
            scheduled_days=int(data["scheduled_days"]),
            reps=int(data["reps"]),
            lapses=int(data["lapses"]),
            state=CardState(int(data["state"])),
            learning_steps=int(data.get("learning_steps", 0)),
            due=ensure_utc(datetime.fromisoformat(data["due"])),
            last_review=ensure_utc(datetime.fromisoformat(last_review)) if last_review else None,
        )


@dataclass(frozen=True)
class ReviewEvent:
    """
    One rating submitted by a learner. Append-only.

    The full post-review MemoryState is carried in `memory` so scheduling can
    resume from this single row.
    """

    id: str
    user_id: str
    card_id: str
    rating: Rating
    reviewed_at: datetime
    memory: MemoryState
    parameters_version: str = DEFAULT_PARAMETERS_VERSION

    @property
    def scheduled_at(self) -> datetime:
        return self.memory.due

    @property
    def interval_days(self) -> int:
        return self.memory.scheduled_days

    @property
    def stability(self) -> float:
        return self.memory.stability

    @property
    def difficulty(self) -> float:
        return self.memory.difficulty


@dataclass(frozen=True)
class SchedulingParameters:
    """
    Versioned configuration of the memory model.

    Historical review events record `version`, so a retuned weight vector
    gets a new version instead of silently replacing the old one.
    """

    version: str = DEFAULT_PARAMETERS_VERSION
    weights: tuple[float, ...] = DEFAULT_WEIGHTS
    desired_retention: float = DEFAULT_DESIRED_RETENTION
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL
    learning_steps: tuple[timedelta, ...] = field(
        default_factory=lambda: tuple(timedelta(minutes=m) for m in DEFAULT_LEARNING_STEPS_MINUTES)
    )
    relearning_steps: tuple[timedelta, ...] = field(
        default_factory=lambda: tuple(
            timedelta(minutes=m) for m in DEFAULT_RELEARNING_STEPS_MINUTES
        )
    )

    def __post_init__(self):
        if len(self.weights) != WEIGHT_COUNT:
            raise ValueError(f"Expected {WEIGHT_COUNT} weights, got {len(self.weights)}")
        if not 0.0 < self.desired_retention < 1.0:
            raise ValueError(f"desired_retention must be in (0, 1), got {self.desired_retention}")
        if self.maximum_interval < 1:
            raise ValueError("maximum_interval must be at least 1 day")

    @property
    def decay(self) -> float:
        return -self.weights[20]

    @property
    def factor(self) -> float:
        return 0.9 ** (1 / self.decay) - 1
