"""
Study service: application layer orchestrator.

Coordinates the memory model, the review log, the mastery scorer and the
queue builders behind the operations exposed to the HTTP server and the CLI.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from ulid import ULID

from spacedeck.application.queue_builder import StudyQueue, build_study_queue
from spacedeck.application.quiz_queue import QuizQueue, build_quiz_queue
from spacedeck.application.scheduling.engine import MemoryModelEngine
from spacedeck.application.stats.grades import (
    DEFAULT_GRADE_SCALE,
    DeckPerformance,
    GradeScale,
    deck_performance,
)
from spacedeck.application.stats.load_monitor import DailyLoadMonitor
from spacedeck.application.stats.mastery import MasteryScorer
from spacedeck.domain.constants import (
    DEFAULT_QUIZ_QUEUE_LIMIT,
    DEFAULT_STUDY_QUEUE_LIMIT,
    GRADE_MIN_REVIEWS,
    GRADE_RECENT_REVIEWS,
)
from spacedeck.domain.errors import NotFoundError, StorageError, ValidationError
from spacedeck.domain.ports import DeckRepository, DeckScoreRepository, ReviewLogRepository
from spacedeck.domain.scheduling.models import (
    MemoryState,
    Rating,
    ReviewEvent,
    ensure_utc,
    utcnow,
)
from spacedeck.domain.stats.models import DeckScore, LoadWarning, ScoreWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    """What the caller learns after a rating is recorded."""

    card_id: str
    due: datetime
    stability: float
    scheduled_days: int
    memory: MemoryState
    deck_score: DeckScore


class StudyService:
    """
    Application service for reviews, queues and deck scores.

    Follows Dependency Inversion: depends on the repository ports, not on
    concrete storage adapters.
    """

    def __init__(
        self,
        decks: DeckRepository,
        review_log: ReviewLogRepository,
        scores: DeckScoreRepository,
        engine: MemoryModelEngine | None = None,
        scorer: MasteryScorer | None = None,
        load_monitor: DailyLoadMonitor | None = None,
        grade_scale: GradeScale = DEFAULT_GRADE_SCALE,
        study_limit: int = DEFAULT_STUDY_QUEUE_LIMIT,
        quiz_limit: int = DEFAULT_QUIZ_QUEUE_LIMIT,
        grade_min_reviews: int = GRADE_MIN_REVIEWS,
        grade_recent_reviews: int = GRADE_RECENT_REVIEWS,
    ):
        self._decks = decks
        self._log = review_log
        self._scores = scores
        self.engine = engine or MemoryModelEngine()
        self.scorer = scorer or MasteryScorer(scores, review_log)
        self.load_monitor = load_monitor or DailyLoadMonitor(review_log)
        self.grade_scale = grade_scale
        self.study_limit = study_limit
        self.quiz_limit = quiz_limit
        self.grade_min_reviews = grade_min_reviews
        self.grade_recent_reviews = grade_recent_reviews

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    async def _require_deck(self, user_id: str, deck_id: str) -> None:
        if not user_id:
            raise ValidationError("user id is required", field="user_id")
        if not deck_id:
            raise ValidationError("deck id is required", field="deck_id")

        owner = await self._decks.deck_owner(deck_id)
        if owner is None or owner != user_id:
            logger.warning(f"Deck {deck_id} not found for user {user_id}")
            raise NotFoundError(f"Deck not found: {deck_id}")

    async def _require_card(self, deck_id: str, card_id: str) -> None:
        if not card_id:
            raise ValidationError("cardId is required", field="card_id")

        card_deck = await self._decks.card_deck(card_id)
        if card_deck != deck_id:
            raise NotFoundError(f"Card not found in deck {deck_id}: {card_id}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def current_state(self, user_id: str, card_id: str, now: datetime) -> MemoryState:
        """Memory state carried by the latest review event, or the New default."""
        latest = await self._log.latest_event(user_id, card_id)
        if latest is None:
            return MemoryState.new(now)
        return latest.memory

    async def record_review(
        self,
        user_id: str,
        deck_id: str,
        card_id: str,
        rating: Rating | str,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """
        Record one rating: compute the next state, append it, update the d30 score.

        The three storage steps are not wrapped in a transaction. Storage
        failures are logged and re-raised; nothing is retried.
        """
        rating = Rating.parse(rating)
        await self._require_deck(user_id, deck_id)
        await self._require_card(deck_id, card_id)
        now = ensure_utc(now) if now else utcnow()

        try:
            previous = await self.current_state(user_id, card_id, now)
            memory = self.engine.compute_next_state(previous, rating, now)

            event = ReviewEvent(
                id=str(ULID()),
                user_id=user_id,
                card_id=card_id,
                rating=rating,
                reviewed_at=now,
                memory=memory,
                parameters_version=self.engine.params.version,
            )
            await self._log.append(event)

            score = await self.scorer.apply_review(
                user_id, deck_id, rating, memory.stability, now=now
            )
        except StorageError as e:
            logger.error(f"Recording review of card {card_id} failed: {e}", exc_info=True)
            raise

        logger.info(
            f"Reviewed card {card_id} ({rating.label}) for {user_id}: "
            f"state={memory.state.name} due={memory.due.isoformat()} "
            f"interval={memory.scheduled_days}d stability={memory.stability:.2f}"
        )
        return ReviewOutcome(
            card_id=card_id,
            due=memory.due,
            stability=memory.stability,
            scheduled_days=memory.scheduled_days,
            memory=memory,
            deck_score=score,
        )

    async def build_study_queue(
        self, user_id: str, deck_id: str, limit: int, now: datetime | None = None
    ) -> StudyQueue:
        await self._require_deck(user_id, deck_id)
        queue = await build_study_queue(self._log, user_id, deck_id, limit, now=now)
        logger.info(
            f"Study queue for deck {deck_id}: {len(queue.due)} due, {len(queue.new)} new"
        )
        return queue

    async def build_quiz_queue(
        self,
        user_id: str,
        deck_id: str,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> QuizQueue:
        await self._require_deck(user_id, deck_id)
        return await build_quiz_queue(
            self._log,
            self.load_monitor,
            user_id,
            deck_id,
            limit if limit is not None else self.quiz_limit,
            now=now,
        )

    async def get_deck_score(
        self, user_id: str, deck_id: str, window: ScoreWindow = ScoreWindow.D30
    ) -> DeckScore | None:
        await self._require_deck(user_id, deck_id)
        return await self._scores.get(user_id, deck_id, window)

    async def list_deck_scores(self, user_id: str, deck_id: str) -> list[DeckScore]:
        await self._require_deck(user_id, deck_id)
        return await self._scores.list_for_deck(user_id, deck_id)

    async def get_daily_load_warning(
        self, user_id: str, deck_id: str, now: datetime | None = None
    ) -> LoadWarning | None:
        await self._require_deck(user_id, deck_id)
        return await self.load_monitor.check(user_id, deck_id, now=now)

    async def get_deck_performance(self, user_id: str, deck_id: str) -> DeckPerformance:
        """Grade from the latest reviews, or insufficient data below the review floor."""
        await self._require_deck(user_id, deck_id)
        recent = await self._log.recent_ratings(user_id, deck_id, self.grade_recent_reviews)
        return deck_performance(recent, self.grade_min_reviews, self.grade_scale)

    async def refresh_deck_scores(
        self, user_id: str, deck_id: str, now: datetime | None = None
    ) -> list[DeckScore]:
        await self._require_deck(user_id, deck_id)
        return await self.scorer.recompute_windows(user_id, deck_id, now=now)
