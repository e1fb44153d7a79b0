"""
Memory model engine (FSRS-6).

Pure computation: given a MemoryState, a rating and the review time, derive
the next MemoryState. No I/O, no randomness.
"""

import math
from datetime import datetime, timedelta

from spacedeck.domain.constants import DIFFICULTY_MAX, DIFFICULTY_MIN, STABILITY_MIN
from spacedeck.domain.scheduling.models import (
    CardState,
    MemoryState,
    Rating,
    SchedulingParameters,
    ensure_utc,
)


def _clamp_difficulty(value: float) -> float:
    return min(max(value, DIFFICULTY_MIN), DIFFICULTY_MAX)


def _clamp_stability(value: float) -> float:
    return max(value, STABILITY_MIN)


class MemoryModelEngine:
    """
    Computes next memory states from a fixed parameter vector.

    Stateless apart from its parameters; one instance can serve every card.
    """

    def __init__(self, params: SchedulingParameters | None = None):
        self.params = params or SchedulingParameters()
        self._w = self.params.weights

    # ------------------------------------------------------------------
    # Forgetting curve
    # ------------------------------------------------------------------

    def forgetting_curve(self, elapsed_days: float, stability: float) -> float:
        """Probability of recall after `elapsed_days` for a given stability."""
        return (1 + self.params.factor * elapsed_days / stability) ** self.params.decay

    def retrievability(self, memory: MemoryState, now: datetime) -> float:
        """
        Current recall probability of a card.

        New cards have nothing to recall and report 0.
        """
        if memory.state == CardState.NEW or memory.last_review is None:
            return 0.0
        elapsed = max((ensure_utc(now) - memory.last_review).total_seconds() / 86400.0, 0.0)
        return self.forgetting_curve(elapsed, _clamp_stability(memory.stability))

    def next_interval(self, stability: float) -> int:
        """Whole days until recall probability falls to the desired retention."""
        p = self.params
        raw = stability / p.factor * (p.desired_retention ** (1 / p.decay) - 1)
        return min(max(round(raw), 1), p.maximum_interval)

    # ------------------------------------------------------------------
    # Stability and difficulty updates
    # ------------------------------------------------------------------

    def initial_stability(self, rating: Rating) -> float:
        return _clamp_stability(self._w[rating - 1])

    def initial_difficulty(self, rating: Rating, clamp: bool = True) -> float:
        value = self._w[4] - math.exp(self._w[5] * (rating - 1)) + 1
        return _clamp_difficulty(value) if clamp else value

    def next_difficulty(self, difficulty: float, rating: Rating) -> float:
        delta = -self._w[6] * (rating - 3)
        damped = difficulty + delta * (10.0 - difficulty) / 9.0
        target = self.initial_difficulty(Rating.EASY, clamp=False)
        reverted = self._w[7] * target + (1 - self._w[7]) * damped
        return _clamp_difficulty(reverted)

    def short_term_stability(self, stability: float, rating: Rating) -> float:
        increase = math.exp(self._w[17] * (rating - 3 + self._w[18])) * stability ** -self._w[19]
        if rating in (Rating.GOOD, Rating.EASY):
            increase = max(increase, 1.0)
        return _clamp_stability(stability * increase)

    def recall_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        w = self._w
        hard_penalty = w[15] if rating == Rating.HARD else 1.0
        easy_bonus = w[16] if rating == Rating.EASY else 1.0
        growth = (
            math.exp(w[8])
            * (11 - difficulty)
            * stability ** -w[9]
            * (math.exp((1 - retrievability) * w[10]) - 1)
            * hard_penalty
            * easy_bonus
        )
        return _clamp_stability(stability * (1 + growth))

    def forget_stability(self, difficulty: float, stability: float, retrievability: float) -> float:
        w = self._w
        long_term = (
            w[11]
            * difficulty ** -w[12]
            * ((stability + 1) ** w[13] - 1)
            * math.exp((1 - retrievability) * w[14])
        )
        short_term = stability / math.exp(w[17] * w[18])
        return _clamp_stability(min(long_term, short_term))

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def compute_next_state(
        self, memory: MemoryState, rating: Rating, now: datetime
    ) -> MemoryState:
        """
        Apply `rating` given at `now` to `memory`.

        Again always counts a lapse. Cards in (re)learning move through the
        configured steps before graduating to day-granularity Review.
        """
        now = ensure_utc(now)
        rating = Rating.parse(rating)

        if memory.last_review is not None:
            elapsed = max((now - memory.last_review).total_seconds() / 86400.0, 0.0)
        else:
            elapsed = 0.0

        stability, difficulty = self._next_memory(memory, rating, elapsed)
        state, step, interval = self._next_step(memory, rating, stability)

        if interval >= timedelta(days=1):
            scheduled_days = interval.days
        else:
            scheduled_days = 0

        return memory.evolve(
            stability=stability,
            difficulty=difficulty,
            elapsed_days=int(elapsed),
            scheduled_days=scheduled_days,
            reps=memory.reps + 1,
            lapses=memory.lapses + (1 if rating == Rating.AGAIN else 0),
            state=state,
            learning_steps=step,
            due=now + interval,
            last_review=now,
        )

    def _next_memory(
        self, memory: MemoryState, rating: Rating, elapsed: float
    ) -> tuple[float, float]:
        if memory.state == CardState.NEW or memory.stability <= 0 or memory.difficulty <= 0:
            return self.initial_stability(rating), self.initial_difficulty(rating)

        stability = _clamp_stability(memory.stability)
        difficulty = _clamp_difficulty(memory.difficulty)

        if elapsed < 1.0:
            next_s = self.short_term_stability(stability, rating)
        else:
            r = self.forgetting_curve(elapsed, stability)
            if rating == Rating.AGAIN:
                next_s = self.forget_stability(difficulty, stability, r)
            else:
                next_s = self.recall_stability(difficulty, stability, r, rating)

        return next_s, self.next_difficulty(difficulty, rating)

    def _next_step(
        self, memory: MemoryState, rating: Rating, stability: float
    ) -> tuple[CardState, int, timedelta]:
        """Return (state, learning step index, interval until due)."""
        graduated = timedelta(days=self.next_interval(stability))

        if memory.state == CardState.REVIEW:
            if rating != Rating.AGAIN:
                return CardState.REVIEW, 0, graduated
            if not self.params.relearning_steps:
                return CardState.REVIEW, 0, graduated
            return CardState.RELEARNING, 0, self.params.relearning_steps[0]

        if memory.state == CardState.RELEARNING:
            steps = self.params.relearning_steps
            in_steps = CardState.RELEARNING
        else:
            steps = self.params.learning_steps
            in_steps = CardState.LEARNING

        step = memory.learning_steps if memory.state != CardState.NEW else 0

        if not steps or (step >= len(steps) and rating != Rating.AGAIN):
            return CardState.REVIEW, 0, graduated

        if rating == Rating.AGAIN:
            return in_steps, 0, steps[0]

        if rating == Rating.HARD:
            if step == 0 and len(steps) == 1:
                return in_steps, step, steps[0] * 1.5
            if step == 0:
                return in_steps, step, (steps[0] + steps[1]) / 2
            return in_steps, step, steps[step]

        if rating == Rating.GOOD:
            if step + 1 >= len(steps):
                return CardState.REVIEW, 0, graduated
            return in_steps, step + 1, steps[step + 1]

        return CardState.REVIEW, 0, graduated
