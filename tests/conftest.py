import asyncio
from datetime import datetime, timezone

import pytest

from spacedeck.application.study_service import StudyService
from spacedeck.infrastructure.adapters.memory_store import InMemoryStore

USER = "user-1"
DECK = "deck-1"
CARDS = ["card-a", "card-b", "card-c", "card-d", "card-e"]


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """In-memory store with one deck of five cards owned by USER."""
    s = InMemoryStore()

    async def seed():
        await s.add_deck(DECK, USER)
        await s.add_deck("empty-deck", USER)
        await s.add_deck("other-deck", "user-2")
        for card_id in CARDS:
            await s.add_card(DECK, card_id)

    asyncio.run(seed())
    return s


@pytest.fixture
def service(store):
    return StudyService(decks=store, review_log=store, scores=store)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config and data files
    monkeypatch.setenv("HOME", str(home))
    return home
