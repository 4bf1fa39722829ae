"""
Persistence layer for reminder_jobs.

The partial unique index on (secret_id, reminder_type, period_start) for
pending/sent rows is the only mutual-exclusion primitive: ``insert_pending``
either wins the row or raises DuplicateReminderError.
"""

from datetime import datetime

from checkin_notifier.db.helpers import (
    DatabaseError,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from checkin_notifier.features.reminders.domain import (
    ReminderJob,
    ReminderKind,
    ReminderStatus,
    ensure_transition,
)
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 500


class ReminderRepositoryError(DatabaseError):
    """More specific exception for reminder_jobs persistence failures."""


class DuplicateReminderError(Exception):
    """Another attempt already owns this (subject, kind, period)."""

    def __init__(self, subject_id: str, kind: ReminderKind, period_start: datetime):
        super().__init__(
            f"Reminder {kind} for {subject_id} already pending or sent in period starting {period_start.isoformat()}"
        )
        self.subject_id = subject_id
        self.kind = kind
        self.period_start = period_start


class ReminderJobRepository:
    """SQL for the reminder delivery state machine."""

    JOB_SELECT_COLUMNS = """
        id, secret_id, reminder_type, period_start, scheduled_for,
        status, sent_at, failed_at, error, retry_at, created_at
    """

    @classmethod
    def _row_to_job(cls, row: dict | None) -> ReminderJob | None:
        if not row:
            return None

        return ReminderJob(
            id=str(row["id"]),
            subject_id=str(row["secret_id"]),
            kind=ReminderKind(row["reminder_type"]),
            period_start=row["period_start"],
            scheduled_for=row["scheduled_for"],
            status=ReminderStatus(row["status"]),
            sent_at=row.get("sent_at"),
            failed_at=row.get("failed_at"),
            error=row.get("error"),
            retry_at=row.get("retry_at"),
            created_at=row.get("created_at"),
        )

    @classmethod
    async def insert_pending(
        cls,
        subject_id: str,
        kind: ReminderKind,
        period_start: datetime,
        scheduled_for: datetime,
    ) -> ReminderJob:
        """
        Create the pending row for this reminder.

        Autocommit makes the row durable before this returns.

        Raises:
            DuplicateReminderError: The unique index already holds a pending/sent row
            ReminderRepositoryError: Any other persistence failure
        """
        query = f"""
            INSERT INTO reminder_jobs (
                secret_id, reminder_type, period_start, scheduled_for, status
            )
            VALUES (%s, %s, %s, %s, 'pending')
            RETURNING {cls.JOB_SELECT_COLUMNS}
        """

        try:
            row = await fetch_one(query, (subject_id, kind.value, period_start, scheduled_for))
        except DatabaseError as e:
            if e.is_unique_violation:
                raise DuplicateReminderError(subject_id, kind, period_start) from e
            raise ReminderRepositoryError(
                f"Failed to insert pending reminder: {e}",
                operation="insert_pending",
                recoverable=e.recoverable,
                sqlstate=e.sqlstate,
            ) from e

        if not row:
            raise ReminderRepositoryError(
                "Insert returned no row", operation="insert_pending", recoverable=False
            )

        return cls._row_to_job(row)

    @classmethod
    async def mark_sent(cls, job_id: str) -> ReminderJob:
        """pending -> sent, stamping sent_at with the database clock."""
        query = f"""
            UPDATE reminder_jobs
            SET status = 'sent',
                sent_at = NOW(),
                error = NULL,
                updated_at = NOW()
            WHERE id = %s AND status = 'pending'
            RETURNING {cls.JOB_SELECT_COLUMNS}
        """
        row = await fetch_one(query, (job_id,))
        if not row:
            await cls._raise_invalid_transition(job_id, ReminderStatus.SENT)
        return cls._row_to_job(row)

    @classmethod
    async def mark_failed(
        cls, job_id: str, error: str, retry_at: datetime | None = None
    ) -> ReminderJob:
        """pending -> failed. retry_at NULL means the failure is terminal."""
        query = f"""
            UPDATE reminder_jobs
            SET status = 'failed',
                failed_at = NOW(),
                error = %s,
                retry_at = %s,
                updated_at = NOW()
            WHERE id = %s AND status = 'pending'
            RETURNING {cls.JOB_SELECT_COLUMNS}
        """
        row = await fetch_one(query, ((error or "")[:MAX_ERROR_LENGTH], retry_at, job_id))
        if not row:
            await cls._raise_invalid_transition(job_id, ReminderStatus.FAILED)
        return cls._row_to_job(row)

    @classmethod
    async def _raise_invalid_transition(cls, job_id: str, target: ReminderStatus) -> None:
        current = await fetch_val("SELECT status FROM reminder_jobs WHERE id = %s", (job_id,))
        if current is None:
            raise ReminderRepositoryError(
                f"Reminder job {job_id} not found", operation=f"mark_{target}", recoverable=False
            )
        ensure_transition(ReminderStatus(current), target)
        # Legal from the status read now, so the row changed between the two statements
        raise ReminderRepositoryError(
            f"Reminder job {job_id} changed during mark_{target}",
            operation=f"mark_{target}",
        )

    @classmethod
    @with_db_retry(max_retries=2, base_delay=0.1)
    async def has_sent_since(
        cls, subject_id: str, kind: ReminderKind, period_start: datetime
    ) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1 FROM reminder_jobs
                WHERE secret_id = %s
                  AND reminder_type = %s
                  AND status = 'sent'
                  AND sent_at >= %s
            ) AS sent
        """
        return bool(await fetch_val(query, (subject_id, kind.value, period_start)))

    @classmethod
    async def latest_failed(
        cls, subject_id: str, kind: ReminderKind, period_start: datetime
    ) -> ReminderJob | None:
        query = f"""
            SELECT {cls.JOB_SELECT_COLUMNS}
            FROM reminder_jobs
            WHERE secret_id = %s
              AND reminder_type = %s
              AND period_start = %s
              AND status = 'failed'
            ORDER BY failed_at DESC
            LIMIT 1
        """
        return cls._row_to_job(await fetch_one(query, (subject_id, kind.value, period_start)))

    @classmethod
    async def expire_stale_pending(cls, older_than: datetime) -> list[ReminderJob]:
        """
        Fail pending rows abandoned by a crashed attempt.

        Sets retry_at so the next driver pass can pick the reminder up again.
        """
        query = f"""
            UPDATE reminder_jobs
            SET status = 'failed',
                failed_at = NOW(),
                error = 'interrupted before confirmation',
                retry_at = NOW(),
                updated_at = NOW()
            WHERE status = 'pending' AND created_at < %s
            RETURNING {cls.JOB_SELECT_COLUMNS}
        """
        rows = await fetch_all(query, (older_than,))
        jobs = [cls._row_to_job(row) for row in rows]
        if jobs:
            logger.warning("Stale pending reminders expired", count=len(jobs))
        return jobs
