"""Quiz queue assembler: the study queue split plus counts and a load warning."""

from dataclasses import dataclass, field
from datetime import datetime

from spacedeck.application.queue_builder import build_study_queue
from spacedeck.application.stats.load_monitor import DailyLoadMonitor
from spacedeck.domain.constants import DEFAULT_QUIZ_QUEUE_LIMIT
from spacedeck.domain.ports import ReviewLogRepository
from spacedeck.domain.stats.models import LoadWarning


@dataclass
class QuizQueue:
    items: list[str] = field(default_factory=list)
    due_count: int = 0
    new_count: int = 0
    warning: LoadWarning | None = None

    @property
    def total_count(self) -> int:
        return len(self.items)


async def build_quiz_queue(
    review_log: ReviewLogRepository,
    load_monitor: DailyLoadMonitor,
    user_id: str,
    deck_id: str,
    limit: int | None = None,
    now: datetime | None = None,
) -> QuizQueue:
    """
    Assemble the quiz queue.

    Items are the due ids followed by the new ids. A missing limit falls back
    to the quiz default; an explicit non-positive limit is rejected by the
    queue builder.
    """
    if limit is None:
        limit = DEFAULT_QUIZ_QUEUE_LIMIT

    queue = await build_study_queue(review_log, user_id, deck_id, limit, now=now)
    warning = await load_monitor.check(user_id, deck_id, now=now)

    return QuizQueue(
        items=queue.card_ids,
        due_count=len(queue.due),
        new_count=len(queue.new),
        warning=warning,
    )
