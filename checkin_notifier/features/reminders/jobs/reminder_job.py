"""
Reminder job: one pass over every subject with a reminder due.

Each pass is stateless. Overlapping passes (a slow cron run meeting the
next one, or several worker replicas) are expected; the reminder_jobs
unique index decides which of them sends. Counters live in a metrics
object created per pass and never shared between passes.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from checkin_notifier.config import settings
from checkin_notifier.db.helpers import DatabaseError
from checkin_notifier.features.email_delivery.domain import (
    EmailType,
    NewEmailFailure,
    TransportResult,
)
from checkin_notifier.features.email_delivery.services import (
    DeadLetterStore,
    RetryPolicy,
    dead_letter_store,
    retry_policy,
)
from checkin_notifier.features.email_delivery.transport import (
    EmailTransport,
    get_email_transport,
)
from checkin_notifier.features.reminders.domain import (
    CheckInSubject,
    ReminderJob,
    ReminderKind,
    compute_scheduled_for,
    select_due_kind,
)
from checkin_notifier.features.reminders.repository import (
    ReminderJobRepository,
    SubjectRepository,
)
from checkin_notifier.features.reminders.services import (
    AttemptOutcome,
    DeliveryCoordinator,
    PeriodGuard,
    delivery_coordinator,
    period_guard,
)
from checkin_notifier.features.reminders.services.reminder_email import (
    ReminderEmail,
    compose_reminder,
)
from checkin_notifier.infrastructure.observability.logging import (
    get_logger,
    log_delivery_outcome,
)

logger = get_logger(__name__)

SUBJECT_BATCH_LIMIT = 1000
SCHEDULER_ERROR_BACKOFF_SECONDS = 60


class ReminderJobError(Exception):
    """Raised when a reminder pass cannot run at all."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def reminder_send_key(kind: ReminderKind, period_start: datetime) -> str:
    """Ledger key for one reminder kind within one check-in period."""
    return f"{kind}:{period_start.isoformat()}"


class SubjectOutcome(StrEnum):
    NOT_DUE = "not_due"
    ALREADY_SENT = "already_sent"
    BACKING_OFF = "backing_off"
    TERMINAL = "terminal"
    DUPLICATE = "duplicate"
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class ReminderJobMetrics:
    """Metrics tracking for a single reminder pass."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.subjects_processed = 0
        self.stale_pending_recovered = 0
        self.outcomes: dict[str, int] = {outcome.value: 0 for outcome in SubjectOutcome}
        self.processing_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_outcome(self, subject_id: str, outcome: SubjectOutcome, kind: ReminderKind | None):
        self.subjects_processed += 1
        self.outcomes[outcome.value] += 1

        logger.debug(
            "Reminder subject processed",
            subject_id=subject_id,
            reminder_kind=str(kind) if kind else None,
            outcome=str(outcome),
            job_run="reminders",
        )

    def record_processing_error(self, subject_id: str, error: str):
        """Record an error that stopped a subject from being processed."""
        self.subjects_processed += 1
        self.processing_errors += 1

        self.errors.append(
            {
                "subject_id": subject_id,
                "error": error,
                "error_type": "processing",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

        logger.error(
            "Reminder processing error", subject_id=subject_id, error=error, job_run="reminders"
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "reminders",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "subjects_processed": self.subjects_processed,
            "stale_pending_recovered": self.stale_pending_recovered,
            "reminders_sent": self.outcomes[SubjectOutcome.SENT],
            "duplicates_skipped": self.outcomes[SubjectOutcome.DUPLICATE],
            "already_sent": self.outcomes[SubjectOutcome.ALREADY_SENT],
            "retries_scheduled": self.outcomes[SubjectOutcome.RETRY_SCHEDULED],
            "dead_lettered": self.outcomes[SubjectOutcome.DEAD_LETTERED],
            "outcomes": dict(self.outcomes),
            "processing_errors": self.processing_errors,
            "errors_count": len(self.errors),
        }


class ReminderDriver:
    """
    Enumerates due subjects and routes each through guard, coordinator
    and, on failure, retry policy and dead-letter store.

    Holds collaborators only; nothing on the instance changes during a pass.
    """

    def __init__(
        self,
        subjects=None,
        jobs=None,
        guard: PeriodGuard | None = None,
        coordinator: DeliveryCoordinator | None = None,
        dead_letters: DeadLetterStore | None = None,
        policy: RetryPolicy | None = None,
        transport: EmailTransport | None = None,
        max_concurrent: int | None = None,
        stale_after: timedelta | None = None,
    ):
        self.subjects = subjects or SubjectRepository
        self.jobs = jobs or ReminderJobRepository
        self.guard = guard or period_guard
        self.coordinator = coordinator or delivery_coordinator
        self.dead_letters = dead_letters or dead_letter_store
        self.policy = policy or retry_policy
        self.transport = transport
        self.max_concurrent = max_concurrent or settings.REMINDER_MAX_CONCURRENT_SENDS
        self.stale_after = stale_after or timedelta(minutes=settings.STALE_PENDING_MINUTES)

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single reminder pass.

        Returns:
            Dict: Pass metrics

        Raises:
            ReminderJobError: If due subjects could not be loaded
        """
        now = now or datetime.now(UTC)
        metrics = ReminderJobMetrics()
        transport = self.transport or get_email_transport()

        logger.info("Starting reminder pass", now=now.isoformat(), provider=transport.provider)

        try:
            recovered = await self.jobs.expire_stale_pending(now - self.stale_after)
            metrics.stale_pending_recovered = len(recovered)
            subjects = await self.subjects.get_due_subjects(now, SUBJECT_BATCH_LIMIT)
        except DatabaseError as e:
            logger.error("Reminder pass could not load subjects", error=str(e))
            raise ReminderJobError(
                f"Failed to load due subjects: {e}", operation="load_due_subjects"
            ) from e

        if subjects:
            semaphore = asyncio.Semaphore(self.max_concurrent)
            await asyncio.gather(
                *(
                    self._process_with_semaphore(semaphore, subject, now, transport, metrics)
                    for subject in subjects
                )
            )
        else:
            logger.info("No subjects due for reminders")

        metrics.finalize()
        result = metrics.to_dict()
        logger.info("Reminder pass completed", **{k: v for k, v in result.items() if k != "outcomes"})
        return result

    async def _process_with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        subject: CheckInSubject,
        now: datetime,
        transport: EmailTransport,
        metrics: ReminderJobMetrics,
    ) -> None:
        async with semaphore:
            try:
                kind, outcome = await self.process_subject(subject, now, transport)
            except Exception as e:
                metrics.record_processing_error(subject.id, f"{type(e).__name__}: {e}")
                return
            metrics.record_outcome(subject.id, outcome, kind)

    async def process_subject(
        self, subject: CheckInSubject, now: datetime, transport: EmailTransport
    ) -> tuple[ReminderKind | None, SubjectOutcome]:
        """Decide and, when due, attempt the most urgent reminder for one subject."""
        kind = select_due_kind(subject.next_check_in, subject.check_in_days, now)
        if kind is None:
            return None, SubjectOutcome.NOT_DUE

        period = subject.period
        if await self.guard.has_been_sent_in_current_period(subject.id, kind, period.start):
            return kind, SubjectOutcome.ALREADY_SENT

        previous = await self.jobs.latest_failed(subject.id, kind, period.start)
        if previous is not None:
            if previous.retry_at is None:
                return kind, SubjectOutcome.TERMINAL
            if previous.retry_at > now:
                return kind, SubjectOutcome.BACKING_OFF

        send_key = reminder_send_key(kind, period.start)
        await self._resolve_superseded(subject, send_key)

        scheduled_for = compute_scheduled_for(kind, subject.next_check_in, subject.check_in_days)
        email = compose_reminder(subject, kind)

        async def send() -> TransportResult:
            return await transport.send(subject.owner_email, email.subject, email.html, email.text)

        async def on_failure(job: ReminderJob, result: TransportResult) -> datetime | None:
            return await self._hand_off_failure(
                subject, job, email, result, transport.provider, now, send_key
            )

        attempt = await self.coordinator.attempt_send(
            subject.id,
            kind,
            scheduled_for,
            send,
            period_start=period.start,
            on_failure=on_failure,
        )

        if attempt.outcome == AttemptOutcome.DUPLICATE:
            log_delivery_outcome(EmailType.REMINDER, "duplicate", subject.id, reminder_kind=str(kind))
            return kind, SubjectOutcome.DUPLICATE

        if attempt.success:
            log_delivery_outcome(
                EmailType.REMINDER,
                "sent",
                subject.id,
                reminder_kind=str(kind),
                message_id=attempt.transport.message_id,
                provider=transport.provider,
            )
            await self._resolve_after_success(subject, email, send_key)
            return kind, SubjectOutcome.SENT

        if attempt.job.retry_at is None:
            return kind, SubjectOutcome.DEAD_LETTERED
        return kind, SubjectOutcome.RETRY_SCHEDULED

    async def _hand_off_failure(
        self,
        subject: CheckInSubject,
        job: ReminderJob,
        email: ReminderEmail,
        result: TransportResult,
        provider: str,
        now: datetime,
        send_key: str,
    ) -> datetime | None:
        """Record the failure and return when the next automated attempt may run."""
        failure = await self.dead_letters.record(
            NewEmailFailure(
                email_type=EmailType.REMINDER,
                provider=provider,
                recipient=subject.owner_email,
                subject=email.subject,
                error_message=result.error or "send failed",
                secret_id=subject.id,
                send_key=send_key,
            )
        )
        decision = self.policy.decide(failure, result, now=now)

        log_delivery_outcome(
            EmailType.REMINDER,
            "retry_scheduled" if decision.should_retry else "dead_lettered",
            subject.id,
            result.error,
            reminder_kind=str(job.kind),
            job_id=job.id,
            failure_id=failure.id,
            retry_count=failure.retry_count,
            classification=str(decision.classification),
            exhausted=decision.exhausted,
            retry_at=decision.retry_at.isoformat() if decision.retry_at else None,
        )
        return decision.retry_at

    async def _resolve_superseded(self, subject: CheckInSubject, send_key: str) -> None:
        try:
            await self.dead_letters.resolve_superseded(EmailType.REMINDER, subject.id, send_key)
        except DatabaseError as e:
            # Stale rows stay open for an operator; the current send still goes ahead
            logger.error(
                "Could not resolve superseded email failures",
                subject_id=subject.id,
                send_key=send_key,
                error=str(e),
            )

    async def _resolve_after_success(
        self, subject: CheckInSubject, email: ReminderEmail, send_key: str
    ) -> None:
        try:
            await self.dead_letters.resolve_open(
                EmailType.REMINDER, subject.owner_email, email.subject, subject.id, send_key
            )
        except DatabaseError as e:
            # The reminder went out; the open failure stays for an operator to resolve
            logger.error(
                "Could not resolve email failure after successful send",
                subject_id=subject.id,
                error=str(e),
            )


async def run_reminder_job(now: datetime | None = None) -> dict:
    """Run a single reminder pass with default collaborators."""
    return await ReminderDriver().run_once(now)


async def start_reminder_scheduler():
    """
    Run reminder passes forever, every REMINDER_JOB_INTERVAL_MINUTES.

    Several schedulers may run side by side; each pass is independent.
    """
    interval_minutes = settings.REMINDER_JOB_INTERVAL_MINUTES
    logger.info("Starting reminder job scheduler", interval_minutes=interval_minutes)

    while True:
        try:
            await run_reminder_job()
            await asyncio.sleep(interval_minutes * 60)

        except Exception as e:
            logger.error(
                "Error in reminder job scheduler", error=str(e), error_type=type(e).__name__
            )
            # Avoid a tight loop while the database or transport is down
            await asyncio.sleep(SCHEDULER_ERROR_BACKOFF_SECONDS)
