"""
Ports (interfaces) for persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from spacedeck.domain.scheduling.models import Rating, ReviewEvent
from spacedeck.domain.stats.models import DeckScore, ScoreWindow, WindowStats


class DeckRepository(ABC):
    """
    Port for the deck/card catalogue owned by the surrounding application.

    Implementations:
        - InMemoryStore: process-local dictionaries.
        - SqliteStore: a SQLite database file.
    """

    @abstractmethod
    async def deck_owner(self, deck_id: str) -> str | None:
        """Return the owning user id, or None if the deck does not exist."""
        pass

    @abstractmethod
    async def card_deck(self, card_id: str) -> str | None:
        """Return the deck id of a card, or None if the card does not exist."""
        pass

    @abstractmethod
    async def list_card_ids(self, deck_id: str) -> list[str]:
        """Card ids of a deck in creation order."""
        pass


class ReviewLogRepository(ABC):
    """
    Port for the append-only review log.

    The latest event of a (user, card) pair is its current memory state.
    "Latest" means most recently appended.
    """

    @abstractmethod
    async def latest_event(self, user_id: str, card_id: str) -> ReviewEvent | None:
        pass

    @abstractmethod
    async def append(self, event: ReviewEvent) -> None:
        pass

    @abstractmethod
    async def due_card_ids(
        self, user_id: str, deck_id: str, now: datetime, limit: int
    ) -> list[str]:
        """
        Cards whose latest event is due at or before `now`.

        Ordered by due time ascending (most overdue first), ties in card
        creation order, at most `limit` ids.
        """
        pass

    @abstractmethod
    async def unreviewed_card_ids(self, user_id: str, deck_id: str, limit: int) -> list[str]:
        """Cards of the deck with no event for this user, in creation order."""
        pass

    @abstractmethod
    async def count_reviews_since(self, user_id: str, deck_id: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def recent_ratings(self, user_id: str, deck_id: str, limit: int) -> list[Rating]:
        """Ratings of the deck's latest `limit` events, newest first."""
        pass

    @abstractmethod
    async def window_stats(self, user_id: str, deck_id: str, since: datetime) -> WindowStats:
        pass


class DeckScoreRepository(ABC):
    """Port for DeckScore rows, one per (user, deck, window)."""

    @abstractmethod
    async def get(self, user_id: str, deck_id: str, window: ScoreWindow) -> DeckScore | None:
        pass

    @abstractmethod
    async def list_for_deck(self, user_id: str, deck_id: str) -> list[DeckScore]:
        pass

    @abstractmethod
    async def update_atomically(
        self,
        user_id: str,
        deck_id: str,
        window: ScoreWindow,
        update: Callable[[DeckScore | None], DeckScore],
    ) -> DeckScore:
        """
        Read the row, apply `update`, write the result, as one atomic step.

        `update` receives None when the row does not exist yet.
        """
        pass

    @abstractmethod
    async def upsert(self, score: DeckScore) -> None:
        pass
