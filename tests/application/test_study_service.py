from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from spacedeck.application.scheduling.engine import MemoryModelEngine
from spacedeck.application.study_service import StudyService
from spacedeck.domain.errors import NotFoundError, StorageError, ValidationError
from spacedeck.domain.scheduling.models import CardState, Rating, SchedulingParameters
from spacedeck.domain.stats.models import ScoreWindow

USER = "user-1"
DECK = "deck-1"


# --- record_review ---


@pytest.mark.asyncio
async def test_record_review_new_card(service, store, now):
    outcome = await service.record_review(USER, DECK, "card-a", "good", now=now)

    assert outcome.card_id == "card-a"
    assert outcome.memory.reps == 1
    assert outcome.memory.lapses == 0
    assert outcome.due > now
    assert outcome.scheduled_days == 0

    event = await store.latest_event(USER, "card-a")
    assert event.rating == Rating.GOOD
    assert event.memory == outcome.memory
    assert event.parameters_version == service.engine.params.version


@pytest.mark.asyncio
async def test_record_review_resumes_from_latest_event(service, now):
    first = await service.record_review(USER, DECK, "card-a", "good", now=now)
    second = await service.record_review(
        USER, DECK, "card-a", "again", now=now + timedelta(minutes=1)
    )

    assert second.memory.reps == 2
    assert second.memory.lapses == 1
    assert second.due < first.due


@pytest.mark.asyncio
async def test_record_review_updates_d30_score(service, now):
    await service.record_review(USER, DECK, "card-a", "good", now=now)
    outcome = await service.record_review(USER, DECK, "card-b", "again", now=now)

    score = await service.get_deck_score(USER, DECK)
    assert score == outcome.deck_score
    assert score.window == ScoreWindow.D30
    assert score.accuracy_pct == pytest.approx(0.9)
    assert score.lapses == 1
    assert score.stability_avg == outcome.stability


@pytest.mark.asyncio
async def test_current_state_defaults_to_new(service, now):
    state = await service.current_state(USER, "card-e", now)
    assert state.state == CardState.NEW
    assert state.reps == 0


@pytest.mark.asyncio
async def test_invalid_rating_rejected_before_engine(service, now):
    with patch.object(service.engine, "compute_next_state") as compute:
        with pytest.raises(ValidationError) as exc:
            await service.record_review(USER, DECK, "card-a", "perfect", now=now)
    assert exc.value.field == "rating"
    compute.assert_not_called()


@pytest.mark.asyncio
async def test_missing_card_id_is_validation_error(service, now):
    with pytest.raises(ValidationError):
        await service.record_review(USER, DECK, "", "good", now=now)


@pytest.mark.asyncio
async def test_unknown_deck_not_found(service, now):
    with pytest.raises(NotFoundError):
        await service.record_review(USER, "nope", "card-a", "good", now=now)


@pytest.mark.asyncio
async def test_foreign_deck_not_found(service, now):
    with pytest.raises(NotFoundError):
        await service.build_study_queue(USER, "other-deck", 10, now=now)


@pytest.mark.asyncio
async def test_card_from_other_deck_not_found(service, store, now):
    await store.add_card("empty-deck", "loner")
    with pytest.raises(NotFoundError):
        await service.record_review(USER, DECK, "loner", "good", now=now)


@pytest.mark.asyncio
async def test_storage_failure_is_reraised(service, store, now):
    with patch.object(store, "append", AsyncMock(side_effect=StorageError("disk full"))):
        with pytest.raises(StorageError):
            await service.record_review(USER, DECK, "card-a", "good", now=now)
    assert await service.get_deck_score(USER, DECK) is None


@pytest.mark.asyncio
async def test_parameters_version_recorded(store, now):
    params = SchedulingParameters(version="fsrs-6-refit-test")
    service = StudyService(store, store, store, engine=MemoryModelEngine(params))
    await service.record_review(USER, DECK, "card-a", "easy", now=now)

    event = await store.latest_event(USER, "card-a")
    assert event.parameters_version == "fsrs-6-refit-test"


# --- queues ---


@pytest.mark.asyncio
async def test_study_queue_after_reviews(service, now):
    await service.record_review(USER, DECK, "card-a", "easy", now=now - timedelta(days=30))
    await service.record_review(USER, DECK, "card-b", "easy", now=now)

    queue = await service.build_study_queue(USER, DECK, 10, now=now)

    assert queue.due == ["card-a"]
    assert queue.new == ["card-c", "card-d", "card-e"]


@pytest.mark.asyncio
async def test_quiz_queue_uses_service_default_limit(store, now):
    service = StudyService(store, store, store, quiz_limit=2)
    queue = await service.build_quiz_queue(USER, DECK, now=now)
    assert queue.items == ["card-a", "card-b"]


# --- scores, grades and load ---


@pytest.mark.asyncio
async def test_deck_score_absent_before_reviews(service):
    assert await service.get_deck_score(USER, DECK) is None
    assert await service.list_deck_scores(USER, DECK) == []


@pytest.mark.asyncio
async def test_deck_performance_needs_floor(service, now):
    for i in range(9):
        await service.record_review(USER, DECK, "card-a", "good", now=now + timedelta(minutes=i))
    perf = await service.get_deck_performance(USER, DECK)
    assert perf.insufficient_data

    await service.record_review(USER, DECK, "card-b", "again", now=now + timedelta(minutes=10))
    perf = await service.get_deck_performance(USER, DECK)
    assert perf.review_count == 10
    assert perf.success_rate == pytest.approx(0.9)
    assert perf.grade.label == "B"


@pytest.mark.asyncio
async def test_refresh_deck_scores_writes_windows(service, now):
    await service.record_review(USER, DECK, "card-a", "good", now=now - timedelta(days=40))
    await service.record_review(USER, DECK, "card-b", "again", now=now - timedelta(days=2))
    await service.record_review(USER, DECK, "card-c", "good", now=now - timedelta(days=1))

    written = await service.refresh_deck_scores(USER, DECK, now=now)
    by_window = {s.window: s for s in written}

    assert by_window[ScoreWindow.D7].accuracy_pct == pytest.approx(0.5)
    assert by_window[ScoreWindow.D30].accuracy_pct == pytest.approx(0.5)
    assert by_window[ScoreWindow.D90].accuracy_pct == pytest.approx(2 / 3)
    assert by_window[ScoreWindow.D90].lapses == 1

    listed = await service.list_deck_scores(USER, DECK)
    assert [s.window for s in listed] == [ScoreWindow.D7, ScoreWindow.D30, ScoreWindow.D90]


@pytest.mark.asyncio
async def test_daily_load_warning_passthrough(service, now):
    assert await service.get_daily_load_warning(USER, DECK, now=now) is None
