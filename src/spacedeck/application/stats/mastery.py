"""
Mastery scorer: rolling per-deck accuracy for a learner.

The d30 row is updated on every review with an exponential moving average.
The d7/d30/d90 rows can also be recomputed in batch from the review log.
"""

import logging
from datetime import datetime, timedelta

from ulid import ULID

from spacedeck.domain.constants import EMA_ALPHA, RATING_ACCURACY_SAMPLES
from spacedeck.domain.ports import DeckScoreRepository, ReviewLogRepository
from spacedeck.domain.scheduling.models import Rating, ensure_utc, utcnow
from spacedeck.domain.stats.models import DeckScore, ScoreWindow

logger = logging.getLogger(__name__)


def accuracy_sample(rating: Rating) -> float:
    """Instantaneous accuracy of one rating: again 0.0, hard 0.6, good/easy 1.0."""
    return RATING_ACCURACY_SAMPLES[Rating.parse(rating).label]


def blend(previous: float, sample: float, alpha: float = EMA_ALPHA) -> float:
    """One EMA step: previous * (1 - alpha) + sample * alpha."""
    return previous * (1 - alpha) + sample * alpha


class MasteryScorer:
    """
    Maintains DeckScore rows.

    Review-time updates go through the store's atomic update so concurrent
    reviews of one deck cannot lose each other's EMA step.
    """

    def __init__(
        self,
        scores: DeckScoreRepository,
        review_log: ReviewLogRepository | None = None,
        alpha: float = EMA_ALPHA,
    ):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self._scores = scores
        self._log = review_log
        self.alpha = alpha

    def next_score(
        self,
        existing: DeckScore | None,
        user_id: str,
        deck_id: str,
        rating: Rating,
        stability: float,
        now: datetime,
    ) -> DeckScore:
        """Pure EMA update of one d30 row. A missing row is seeded with the sample."""
        sample = accuracy_sample(rating)
        lapse = 1 if rating == Rating.AGAIN else 0

        if existing is None:
            return DeckScore(
                id=str(ULID()),
                user_id=user_id,
                deck_id=deck_id,
                window=ScoreWindow.D30,
                accuracy_pct=sample,
                stability_avg=stability,
                lapses=lapse,
                updated_at=now,
            )

        return DeckScore(
            id=existing.id,
            user_id=user_id,
            deck_id=deck_id,
            window=ScoreWindow.D30,
            accuracy_pct=blend(existing.accuracy_pct, sample, self.alpha),
            stability_avg=stability,
            lapses=existing.lapses + lapse,
            updated_at=now,
        )

    async def apply_review(
        self,
        user_id: str,
        deck_id: str,
        rating: Rating,
        stability: float,
        now: datetime | None = None,
    ) -> DeckScore:
        """Fold one review into the learner's d30 score for the deck."""
        rating = Rating.parse(rating)
        now = ensure_utc(now) if now else utcnow()

        score = await self._scores.update_atomically(
            user_id,
            deck_id,
            ScoreWindow.D30,
            lambda existing: self.next_score(existing, user_id, deck_id, rating, stability, now),
        )
        logger.debug(
            f"Deck {deck_id} d30 score for {user_id}: "
            f"accuracy={score.accuracy_pct:.3f} lapses={score.lapses}"
        )
        return score

    async def recompute_windows(
        self, user_id: str, deck_id: str, now: datetime | None = None
    ) -> list[DeckScore]:
        """
        Batch recompute of every window from the review log.

        Accuracy is the share of good/easy reviews in the window. Windows
        without reviews are left untouched.
        """
        if self._log is None:
            raise RuntimeError("recompute_windows needs a review log repository")

        now = ensure_utc(now) if now else utcnow()
        written: list[DeckScore] = []

        for window in ScoreWindow:
            stats = await self._log.window_stats(user_id, deck_id, now - timedelta(days=window.days))
            if stats.total_reviews == 0:
                continue

            existing = await self._scores.get(user_id, deck_id, window)
            score = DeckScore(
                id=existing.id if existing else str(ULID()),
                user_id=user_id,
                deck_id=deck_id,
                window=window,
                accuracy_pct=stats.correct_reviews / stats.total_reviews,
                stability_avg=stats.avg_stability,
                lapses=stats.lapses,
                updated_at=now,
            )
            await self._scores.upsert(score)
            written.append(score)

        logger.info(f"Recomputed {len(written)} score windows for deck {deck_id}")
        return written
