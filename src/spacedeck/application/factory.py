"""
Storage and service factory.
Centralizes the logic for selecting the storage adapter and wiring the study service.
"""

import logging

from spacedeck.application.config import AppConfig
from spacedeck.application.scheduling.engine import MemoryModelEngine
from spacedeck.application.scheduling.parameters import build_parameters
from spacedeck.application.stats.load_monitor import DailyLoadMonitor
from spacedeck.application.stats.mastery import MasteryScorer
from spacedeck.application.study_service import StudyService
from spacedeck.infrastructure.adapters.memory_store import InMemoryStore
from spacedeck.infrastructure.adapters.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)


def get_store(config: AppConfig) -> InMemoryStore | SqliteStore:
    """
    Returns the storage adapter selected by config.

    Both adapters implement DeckRepository, ReviewLogRepository and
    DeckScoreRepository.
    """
    if config.backend == "memory":
        logger.info("Storage: in-memory")
        return InMemoryStore()

    logger.info(f"Storage: SQLite at {config.database_path}")
    return SqliteStore(config.database_path)


def build_engine(config: AppConfig) -> MemoryModelEngine:
    params = build_parameters(
        parameters_file=config.parameters_file,
        desired_retention=config.desired_retention,
        maximum_interval=config.maximum_interval,
        learning_steps_minutes=config.learning_steps_minutes,
        relearning_steps_minutes=config.relearning_steps_minutes,
    )
    return MemoryModelEngine(params)


def build_study_service(
    config: AppConfig, store: InMemoryStore | SqliteStore | None = None
) -> StudyService:
    """Wire a StudyService from config, creating the store when none is given."""
    store = store if store is not None else get_store(config)
    return StudyService(
        decks=store,
        review_log=store,
        scores=store,
        engine=build_engine(config),
        scorer=MasteryScorer(store, store, alpha=config.ema_alpha),
        load_monitor=DailyLoadMonitor(
            store,
            tz=config.tz,
            min_today=config.load_min_today,
            ratio=config.load_ratio,
            absolute=config.load_absolute,
        ),
        study_limit=config.study_queue_limit,
        quiz_limit=config.quiz_queue_limit,
        grade_min_reviews=config.grade_min_reviews,
        grade_recent_reviews=config.grade_recent_reviews,
    )
