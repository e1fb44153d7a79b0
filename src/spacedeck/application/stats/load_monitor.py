"""
Daily load monitor.

Compares today's review count for a deck with the trailing daily average and
produces an advisory warning. Never blocks queue construction or reviews.
"""

import logging
from datetime import datetime, timedelta, timezone, tzinfo

from spacedeck.domain.constants import (
    LOAD_ABSOLUTE,
    LOAD_MIN_TODAY,
    LOAD_RATIO,
    LOAD_TRAILING_DAYS,
)
from spacedeck.domain.ports import ReviewLogRepository
from spacedeck.domain.scheduling.models import ensure_utc, utcnow
from spacedeck.domain.stats.models import LoadWarning

logger = logging.getLogger(__name__)


def local_midnight(now: datetime, tz: tzinfo) -> datetime:
    """Start of the local day containing `now`, returned in UTC."""
    local = ensure_utc(now).astimezone(tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def evaluate_load(
    today_count: int,
    daily_average: float,
    min_today: int = LOAD_MIN_TODAY,
    ratio: float = LOAD_RATIO,
    absolute: int = LOAD_ABSOLUTE,
) -> LoadWarning | None:
    """Decide whether today's count deserves a warning."""
    if today_count > min_today and today_count > daily_average * ratio:
        return LoadWarning(
            reason="above_average",
            today_count=today_count,
            daily_average=daily_average,
            message=(
                f"You have {today_count} cards to review today, which is higher than "
                f"your usual average of {round(daily_average)}. "
                "Consider spreading them out or taking breaks."
            ),
        )

    if today_count > absolute:
        return LoadWarning(
            reason="high_volume",
            today_count=today_count,
            daily_average=daily_average,
            message=(
                f"You have {today_count} cards to review today. "
                "Consider taking regular breaks to maintain focus."
            ),
        )

    return None


class DailyLoadMonitor:
    def __init__(
        self,
        review_log: ReviewLogRepository,
        tz: tzinfo = timezone.utc,
        min_today: int = LOAD_MIN_TODAY,
        ratio: float = LOAD_RATIO,
        absolute: int = LOAD_ABSOLUTE,
        trailing_days: int = LOAD_TRAILING_DAYS,
    ):
        self._log = review_log
        self.tz = tz
        self.min_today = min_today
        self.ratio = ratio
        self.absolute = absolute
        self.trailing_days = trailing_days

    async def check(
        self, user_id: str, deck_id: str, now: datetime | None = None
    ) -> LoadWarning | None:
        now = ensure_utc(now) if now else utcnow()

        today_count = await self._log.count_reviews_since(
            user_id, deck_id, local_midnight(now, self.tz)
        )
        trailing = await self._log.count_reviews_since(
            user_id, deck_id, now - timedelta(days=self.trailing_days)
        )
        daily_average = trailing / self.trailing_days

        warning = evaluate_load(
            today_count, daily_average, self.min_today, self.ratio, self.absolute
        )
        if warning:
            logger.warning(
                f"Daily load warning for {user_id} on deck {deck_id}: "
                f"{warning.reason} (today={today_count}, avg={daily_average:.1f})"
            )
        return warning
