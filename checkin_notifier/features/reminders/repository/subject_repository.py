"""
Read-only access to check-in subjects (secrets) owned by the secret store.
"""

from datetime import datetime, timedelta

from checkin_notifier.db.helpers import fetch_all
from checkin_notifier.features.reminders.domain import CheckInSubject

# Widest reminder horizon besides proportional kinds, which need the full period
DEFAULT_LOOKAHEAD = timedelta(days=7)


class SubjectRepository:
    """Queries against secrets/users; this layer never writes to them."""

    @staticmethod
    def _row_to_subject(row: dict) -> CheckInSubject:
        return CheckInSubject(
            id=str(row["id"]),
            title=row["title"],
            owner_email=row["owner_email"],
            owner_name=row.get("owner_name"),
            check_in_days=row["check_in_days"],
            last_check_in=row.get("last_check_in"),
            next_check_in=row["next_check_in"],
        )

    @classmethod
    async def get_due_subjects(cls, now: datetime, batch_limit: int = 1000) -> list[CheckInSubject]:
        """
        Active, untriggered subjects whose deadline is still ahead and inside
        either the fixed reminder horizon or the second half of their period.
        """
        query = """
            SELECT s.id, s.title, s.check_in_days, s.last_check_in, s.next_check_in,
                   u.email AS owner_email, u.name AS owner_name
            FROM secrets s
            JOIN users u ON u.id = s.user_id
            WHERE s.status = 'active'
              AND COALESCE(s.is_triggered, false) = false
              AND s.next_check_in IS NOT NULL
              AND u.email IS NOT NULL
              AND s.next_check_in > %s
              AND (
                  s.next_check_in <= %s
                  OR s.next_check_in <= %s + (s.check_in_days * INTERVAL '1 day') * 0.5
              )
            ORDER BY s.next_check_in ASC
            LIMIT %s
        """
        rows = await fetch_all(query, (now, now + DEFAULT_LOOKAHEAD, now, batch_limit))
        return [cls._row_to_subject(row) for row in rows]
