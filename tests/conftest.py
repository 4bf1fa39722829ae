import itertools
from datetime import UTC, datetime, timedelta

import pytest

from checkin_notifier.db.helpers import DatabaseError
from checkin_notifier.features.email_delivery.domain import (
    EmailFailure,
    NewEmailFailure,
    TransportResult,
)
from checkin_notifier.features.reminders.domain import (
    CheckInSubject,
    ReminderJob,
    ReminderKind,
    ReminderStatus,
    ensure_transition,
)
from checkin_notifier.features.reminders.repository import DuplicateReminderError

FIXED_NOW = datetime(2025, 2, 24, 12, 0, tzinfo=UTC)

BLOCKING_STATUSES = (ReminderStatus.PENDING, ReminderStatus.SENT)


class FakeReminderJobRepository:
    """
    In-memory reminder_jobs table.

    insert_pending never awaits between the uniqueness check and the
    append, so under asyncio it is as atomic as the partial unique index.
    """

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now
        self.rows: list[ReminderJob] = []
        self.fail_reads = False
        self.fail_inserts = False
        self.fail_insert_subjects: set[str] = set()
        self.fail_mark_sent = False
        self._ids = itertools.count(1)

    def status_of(self, subject_id: str, kind: ReminderKind, period_start: datetime):
        for row in self.rows:
            if (
                row.subject_id == subject_id
                and row.kind == kind
                and row.period_start == period_start
                and row.status in BLOCKING_STATUSES
            ):
                return row.status
        return None

    def add(self, **kwargs) -> ReminderJob:
        job = ReminderJob(id=f"job-{next(self._ids)}", **kwargs)
        self.rows.append(job)
        return job

    def _get(self, job_id: str) -> ReminderJob:
        for row in self.rows:
            if row.id == job_id:
                return row
        raise DatabaseError(f"Reminder job {job_id} not found", operation="get", recoverable=False)

    async def insert_pending(self, subject_id, kind, period_start, scheduled_for) -> ReminderJob:
        if self.fail_inserts or subject_id in self.fail_insert_subjects:
            raise DatabaseError("connection lost", operation="insert_pending", recoverable=True)
        if self.status_of(subject_id, kind, period_start) is not None:
            raise DuplicateReminderError(subject_id, kind, period_start)
        ensure_transition(None, ReminderStatus.PENDING)
        return self.add(
            subject_id=subject_id,
            kind=kind,
            period_start=period_start,
            scheduled_for=scheduled_for,
            status=ReminderStatus.PENDING,
            created_at=self.now,
        )

    async def mark_sent(self, job_id: str) -> ReminderJob:
        if self.fail_mark_sent:
            raise DatabaseError("connection lost", operation="mark_sent", recoverable=True)
        job = self._get(job_id)
        ensure_transition(job.status, ReminderStatus.SENT)
        job.status = ReminderStatus.SENT
        job.sent_at = self.now
        job.error = None
        return job

    async def mark_failed(self, job_id: str, error: str, retry_at=None) -> ReminderJob:
        job = self._get(job_id)
        ensure_transition(job.status, ReminderStatus.FAILED)
        job.status = ReminderStatus.FAILED
        job.failed_at = self.now
        job.error = error
        job.retry_at = retry_at
        return job

    async def has_sent_since(self, subject_id, kind, period_start) -> bool:
        if self.fail_reads:
            raise DatabaseError("read timeout", operation="has_sent_since", recoverable=True)
        return any(
            row.subject_id == subject_id
            and row.kind == kind
            and row.status == ReminderStatus.SENT
            and row.sent_at >= period_start
            for row in self.rows
        )

    async def latest_failed(self, subject_id, kind, period_start) -> ReminderJob | None:
        failed = [
            row
            for row in self.rows
            if row.subject_id == subject_id
            and row.kind == kind
            and row.period_start == period_start
            and row.status == ReminderStatus.FAILED
        ]
        # Newest insert wins ties, as failed_at comes from a frozen clock here
        return max(reversed(failed), key=lambda row: row.failed_at, default=None)

    async def expire_stale_pending(self, older_than: datetime) -> list[ReminderJob]:
        expired = []
        for row in self.rows:
            if row.status == ReminderStatus.PENDING and row.created_at < older_than:
                row.status = ReminderStatus.FAILED
                row.failed_at = self.now
                row.error = "interrupted before confirmation"
                row.retry_at = self.now
                expired.append(row)
        return expired


class FakeEmailFailureRepository:
    """In-memory email_failures table with one open row per logical send."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now
        self.rows: list[EmailFailure] = []
        self._ids = itertools.count(1)

    def add(self, **kwargs) -> EmailFailure:
        values = {
            "email_type": "reminder",
            "provider": "sendgrid",
            "recipient": "owner@example.com",
            "subject": "Check-in reminder",
            "error_message": "Service unavailable",
            "retry_count": 0,
            "created_at": self.now,
            "resolved_at": None,
        }
        values.update(kwargs)
        failure = EmailFailure(id=f"failure-{next(self._ids)}", **values)
        self.rows.append(failure)
        return failure

    async def upsert_unresolved(self, failure: NewEmailFailure, retry_ceiling: int) -> EmailFailure:
        existing = await self.find_unresolved(
            failure.email_type,
            failure.recipient,
            failure.subject,
            failure.secret_id,
            failure.send_key,
        )
        if existing is None:
            return self.add(
                email_type=failure.email_type,
                provider=failure.provider,
                recipient=failure.recipient,
                subject=failure.subject,
                error_message=failure.error_message,
                secret_id=failure.secret_id,
                send_key=failure.send_key,
            )
        existing.provider = failure.provider
        existing.error_message = failure.error_message
        existing.retry_count = min(existing.retry_count + 1, retry_ceiling)
        return existing

    async def get(self, failure_id: str) -> EmailFailure | None:
        return next((row for row in self.rows if row.id == failure_id), None)

    async def find_unresolved(
        self, email_type, recipient, subject, secret_id=None, send_key=None
    ) -> EmailFailure | None:
        return next(
            (
                row
                for row in self.rows
                if row.email_type == email_type
                and row.recipient == recipient
                and row.subject == subject
                and row.secret_id == secret_id
                and row.send_key == send_key
                and row.resolved_at is None
            ),
            None,
        )

    async def resolve_superseded(self, email_type, secret_id, send_key) -> int:
        stale = [
            row
            for row in self.rows
            if row.email_type == email_type
            and row.secret_id == secret_id
            and row.send_key != send_key
            and row.resolved_at is None
        ]
        for row in stale:
            row.resolved_at = self.now
        return len(stale)

    async def query(
        self,
        email_type=None,
        provider=None,
        recipient=None,
        unresolved_only=False,
        limit=100,
        offset=0,
    ) -> list[EmailFailure]:
        rows = [
            row
            for row in self.rows
            if (not email_type or row.email_type == email_type)
            and (not provider or row.provider == provider)
            and (not recipient or row.recipient == recipient)
            and (not unresolved_only or row.resolved_at is None)
        ]
        rows.sort(key=lambda row: row.created_at, reverse=True)
        return rows[offset : offset + limit]

    async def increment_retry(self, failure_id, error_message, retry_ceiling) -> EmailFailure | None:
        row = await self.get(failure_id)
        if row is None or row.resolved_at is not None:
            return None
        row.retry_count = min(row.retry_count + 1, retry_ceiling)
        row.error_message = error_message
        return row

    async def mark_resolved(self, failure_id) -> EmailFailure | None:
        row = await self.get(failure_id)
        if row is None:
            return None
        if row.resolved_at is None:
            row.resolved_at = self.now
        return row

    async def delete_resolved_before(self, retention_days: int) -> int:
        cutoff = self.now - timedelta(days=retention_days)
        keep = [r for r in self.rows if r.resolved_at is None or r.created_at >= cutoff]
        deleted = len(self.rows) - len(keep)
        self.rows = keep
        return deleted

    async def list_all(self) -> list[EmailFailure]:
        return list(self.rows)


class FakeTransport:
    """Records every send and replays queued results (success by default)."""

    provider = "fake"

    def __init__(self, results: list[TransportResult] | None = None, on_send=None):
        self.results = list(results or [])
        self.on_send = on_send
        self.calls: list[dict] = []

    async def send(self, to, subject, html, text=None) -> TransportResult:
        self.calls.append({"to": to, "subject": subject, "html": html, "text": text})
        if self.on_send is not None:
            self.on_send(to, subject)
        if self.results:
            return self.results.pop(0)
        return TransportResult.ok(f"msg-{len(self.calls)}")


@pytest.fixture
def reminder_repo():
    return FakeReminderJobRepository()


@pytest.fixture
def failure_repo():
    return FakeEmailFailureRepository()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def make_subject():
    def _make(**overrides) -> CheckInSubject:
        values = {
            "id": "secret-1",
            "title": "Bank vault",
            "owner_email": "owner@example.com",
            "owner_name": "Owner",
            "check_in_days": 30,
            "last_check_in": datetime(2025, 2, 1, tzinfo=UTC),
            "next_check_in": datetime(2025, 3, 3, tzinfo=UTC),
        }
        values.update(overrides)
        return CheckInSubject(**values)

    return _make
