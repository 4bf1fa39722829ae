"""
Period guard: has this reminder kind already gone out in the current period?
"""

from datetime import datetime

from checkin_notifier.features.reminders.domain import ReminderKind
from checkin_notifier.features.reminders.repository import ReminderJobRepository
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PeriodGuard:
    """
    Duplicate suppression bounded to the subject's current check-in period.

    Only sent rows with ``sent_at >= period_start`` count, so history from
    an earlier period never blocks the same kind after a new check-in. The
    boundary is inclusive.
    """

    def __init__(self, repository=None):
        self.repository = repository or ReminderJobRepository

    async def has_been_sent_in_current_period(
        self, subject_id: str, kind: ReminderKind, period_start: datetime
    ) -> bool:
        """
        Returns True when a matching sent reminder exists.

        When the answer cannot be determined the guard fails closed and
        reports True, logging the read error.
        """
        try:
            return await self.repository.has_sent_since(subject_id, kind, period_start)
        except Exception as e:
            logger.error(
                "Period guard read failed, suppressing send",
                subject_id=subject_id,
                reminder_kind=str(kind),
                period_start=period_start.isoformat(),
                error=str(e),
                error_type=type(e).__name__,
            )
            return True


period_guard = PeriodGuard()
