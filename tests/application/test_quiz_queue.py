from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from ulid import ULID

from spacedeck.application.quiz_queue import QuizQueue, build_quiz_queue
from spacedeck.application.stats.load_monitor import DailyLoadMonitor
from spacedeck.domain.errors import ValidationError
from spacedeck.domain.scheduling.models import CardState, MemoryState, Rating, ReviewEvent
from spacedeck.domain.stats.models import LoadWarning

USER = "user-1"
DECK = "deck-1"


@pytest.mark.asyncio
async def test_quiz_queue_counts(store, now):
    memory = MemoryState.new(now).evolve(
        state=CardState.REVIEW, due=now - timedelta(days=1), last_review=now - timedelta(days=4)
    )
    await store.append(
        ReviewEvent(
            id=str(ULID()),
            user_id=USER,
            card_id="card-c",
            rating=Rating.GOOD,
            reviewed_at=now - timedelta(days=4),
            memory=memory,
        )
    )

    queue = await build_quiz_queue(store, DailyLoadMonitor(store), USER, DECK, 3, now=now)

    assert queue.items == ["card-c", "card-a", "card-b"]
    assert queue.due_count == 1
    assert queue.new_count == 2
    assert queue.total_count == 3
    assert queue.warning is None


@pytest.mark.asyncio
async def test_default_limit_applies(store, now):
    many = [f"extra-{i}" for i in range(12)]
    for card_id in many:
        await store.add_card(DECK, card_id)

    queue = await build_quiz_queue(store, DailyLoadMonitor(store), USER, DECK, now=now)
    assert queue.total_count == 10


@pytest.mark.asyncio
async def test_warning_is_attached(store, now):
    warning = LoadWarning(
        reason="high_volume", today_count=120, daily_average=110.0, message="busy"
    )
    monitor = MagicMock()
    monitor.check = AsyncMock(return_value=warning)

    queue = await build_quiz_queue(store, monitor, USER, DECK, 5, now=now)

    assert queue.warning is warning
    monitor.check.assert_awaited_once_with(USER, DECK, now=now)


@pytest.mark.asyncio
async def test_explicit_zero_limit_rejected(store, now):
    with pytest.raises(ValidationError):
        await build_quiz_queue(store, DailyLoadMonitor(store), USER, DECK, 0, now=now)


def test_empty_quiz_queue_totals():
    assert QuizQueue().total_count == 0
