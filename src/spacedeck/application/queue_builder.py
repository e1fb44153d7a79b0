"""
Queue builder for study sessions.

Builds a bounded study queue by:
1. Taking cards whose latest review is due, most overdue first
2. Filling the remaining slots with never-reviewed cards in creation order
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from spacedeck.domain.errors import ValidationError
from spacedeck.domain.ports import ReviewLogRepository
from spacedeck.domain.scheduling.models import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class StudyQueue:
    """Result of queue building. Due and new ids are kept apart, never interleaved."""

    due: list[str] = field(default_factory=list)
    new: list[str] = field(default_factory=list)

    @property
    def card_ids(self) -> list[str]:
        return self.due + self.new

    @property
    def total(self) -> int:
        return len(self.due) + len(self.new)


def validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"limit must be an integer, got {limit!r}", field="limit")
    if limit <= 0:
        raise ValidationError(f"limit must be positive, got {limit}", field="limit")
    return limit


async def build_study_queue(
    review_log: ReviewLogRepository,
    user_id: str,
    deck_id: str,
    limit: int,
    now: datetime | None = None,
) -> StudyQueue:
    """
    Build the study queue for a learner and deck.

    Args:
        review_log: Review log port.
        user_id: Learner id.
        deck_id: Deck id.
        limit: Maximum number of cards across both lists (must be > 0).
        now: Reference time; cards due exactly at `now` are included.

    Returns:
        StudyQueue with `due` (most overdue first) and `new` (creation order).
    """
    limit = validate_limit(limit)
    now = ensure_utc(now) if now else utcnow()

    due = await review_log.due_card_ids(user_id, deck_id, now, limit)
    due = due[:limit]

    new: list[str] = []
    remaining = limit - len(due)
    if remaining > 0:
        new = await review_log.unreviewed_card_ids(user_id, deck_id, remaining)
        new = new[:remaining]

    logger.debug(f"Study queue for deck {deck_id}: {len(due)} due, {len(new)} new (limit {limit})")
    return StudyQueue(due=due, new=new)
