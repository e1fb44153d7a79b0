"""
In-memory store: infrastructure adapter keeping everything in process.

Implements every persistence port. Used by tests and by the server when no
durable backend is configured.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from spacedeck.domain.errors import NotFoundError, ValidationError
from spacedeck.domain.ports import DeckRepository, DeckScoreRepository, ReviewLogRepository
from spacedeck.domain.scheduling.models import Rating, ReviewEvent
from spacedeck.domain.stats.models import DeckScore, ScoreWindow, WindowStats

logger = logging.getLogger(__name__)


class InMemoryStore(DeckRepository, ReviewLogRepository, DeckScoreRepository):
    def __init__(self):
        self._deck_owners: dict[str, str] = {}
        self._deck_cards: dict[str, list[str]] = {}
        self._card_decks: dict[str, str] = {}
        self._events: list[ReviewEvent] = []
        self._latest: dict[tuple[str, str], ReviewEvent] = {}
        self._scores: dict[tuple[str, str, ScoreWindow], DeckScore] = {}
        self._score_lock = asyncio.Lock()

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Catalogue seeding
    # ------------------------------------------------------------------

    async def add_deck(self, deck_id: str, owner_id: str) -> None:
        existing = self._deck_owners.get(deck_id)
        if existing is not None and existing != owner_id:
            raise ValidationError(f"Deck already exists: {deck_id}", field="deck_id")
        self._deck_owners[deck_id] = owner_id
        self._deck_cards.setdefault(deck_id, [])

    async def add_card(self, deck_id: str, card_id: str) -> None:
        if deck_id not in self._deck_owners:
            raise NotFoundError(f"Deck not found: {deck_id}")
        if card_id in self._card_decks:
            raise ValidationError(f"Card already exists: {card_id}", field="card_id")
        self._card_decks[card_id] = deck_id
        self._deck_cards[deck_id].append(card_id)

    async def delete_card(self, card_id: str) -> None:
        """Remove a card together with its review events."""
        deck_id = self._card_decks.pop(card_id, None)
        if deck_id is None:
            return
        self._deck_cards[deck_id].remove(card_id)
        self._events = [e for e in self._events if e.card_id != card_id]
        self._latest = {k: v for k, v in self._latest.items() if k[1] != card_id}
        logger.debug(f"Deleted card {card_id} and its review events")

    # ------------------------------------------------------------------
    # DeckRepository
    # ------------------------------------------------------------------

    async def deck_owner(self, deck_id: str) -> str | None:
        return self._deck_owners.get(deck_id)

    async def card_deck(self, card_id: str) -> str | None:
        return self._card_decks.get(card_id)

    async def list_card_ids(self, deck_id: str) -> list[str]:
        return list(self._deck_cards.get(deck_id, []))

    # ------------------------------------------------------------------
    # ReviewLogRepository
    # ------------------------------------------------------------------

    def _deck_events(self, user_id: str, deck_id: str):
        for event in self._events:
            if event.user_id == user_id and self._card_decks.get(event.card_id) == deck_id:
                yield event

    async def latest_event(self, user_id: str, card_id: str) -> ReviewEvent | None:
        return self._latest.get((user_id, card_id))

    async def append(self, event: ReviewEvent) -> None:
        self._events.append(event)
        self._latest[(event.user_id, event.card_id)] = event

    async def due_card_ids(
        self, user_id: str, deck_id: str, now: datetime, limit: int
    ) -> list[str]:
        due = []
        for position, card_id in enumerate(self._deck_cards.get(deck_id, [])):
            event = self._latest.get((user_id, card_id))
            if event is not None and event.scheduled_at <= now:
                due.append((event.scheduled_at, position, card_id))
        due.sort()
        return [card_id for _, _, card_id in due[:limit]]

    async def unreviewed_card_ids(self, user_id: str, deck_id: str, limit: int) -> list[str]:
        fresh = [
            card_id
            for card_id in self._deck_cards.get(deck_id, [])
            if (user_id, card_id) not in self._latest
        ]
        return fresh[:limit]

    async def count_reviews_since(self, user_id: str, deck_id: str, since: datetime) -> int:
        return sum(1 for e in self._deck_events(user_id, deck_id) if e.reviewed_at >= since)

    async def recent_ratings(self, user_id: str, deck_id: str, limit: int) -> list[Rating]:
        events = list(self._deck_events(user_id, deck_id))
        return [e.rating for e in reversed(events)][:limit]

    async def window_stats(self, user_id: str, deck_id: str, since: datetime) -> WindowStats:
        events = [e for e in self._deck_events(user_id, deck_id) if e.reviewed_at >= since]
        if not events:
            return WindowStats(total_reviews=0, correct_reviews=0, avg_stability=0.0, lapses=0)
        return WindowStats(
            total_reviews=len(events),
            correct_reviews=sum(1 for e in events if e.rating in (Rating.GOOD, Rating.EASY)),
            avg_stability=sum(e.stability for e in events) / len(events),
            lapses=sum(1 for e in events if e.rating == Rating.AGAIN),
        )

    # ------------------------------------------------------------------
    # DeckScoreRepository
    # ------------------------------------------------------------------

    async def get(self, user_id: str, deck_id: str, window: ScoreWindow) -> DeckScore | None:
        return self._scores.get((user_id, deck_id, window))

    async def list_for_deck(self, user_id: str, deck_id: str) -> list[DeckScore]:
        return [
            score
            for (uid, did, _), score in sorted(self._scores.items(), key=lambda kv: kv[0][2].days)
            if uid == user_id and did == deck_id
        ]

    async def update_atomically(
        self,
        user_id: str,
        deck_id: str,
        window: ScoreWindow,
        update: Callable[[DeckScore | None], DeckScore],
    ) -> DeckScore:
        key = (user_id, deck_id, window)
        async with self._score_lock:
            score = update(self._scores.get(key))
            self._scores[key] = score
        return score

    async def upsert(self, score: DeckScore) -> None:
        async with self._score_lock:
            self._scores[(score.user_id, score.deck_id, score.window)] = score
