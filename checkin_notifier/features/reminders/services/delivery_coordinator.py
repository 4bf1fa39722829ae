"""
Delivery coordinator: at most one transport call per reminder per period.

Per attempt the order is fixed:
1. insert the pending row (the unique index arbitrates concurrent callers)
2. call the transport, only after the pending row is committed
3. move the row pending -> sent, or pending -> failed after handing the
   failure to the caller's retry/dead-letter handler

A crash between 2 and 3 leaves the pending row behind, which keeps
concurrent attempts out until stale-pending recovery fails it.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from checkin_notifier.config import settings
from checkin_notifier.db.helpers import DatabaseError
from checkin_notifier.features.email_delivery.domain import TransportResult
from checkin_notifier.features.email_delivery.transport import SendFn, guarded_send
from checkin_notifier.features.reminders.domain import (
    InvalidTransitionError,
    ReminderJob,
    ReminderKind,
)
from checkin_notifier.features.reminders.repository import (
    DuplicateReminderError,
    ReminderJobRepository,
)
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Receives the pending job and the failed result; returns when to retry (None = never)
FailureHandler = Callable[[ReminderJob, TransportResult], Awaitable[datetime | None]]


class AttemptOutcome(StrEnum):
    SENT = "sent"
    DUPLICATE = "duplicate"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass(slots=True)
class AttemptResult:
    outcome: AttemptOutcome
    job: ReminderJob | None = None
    transport: TransportResult | None = None

    @property
    def success(self) -> bool:
        return self.outcome == AttemptOutcome.SENT


class DeliveryPersistenceError(Exception):
    """Pending/sent/failed state could not be recorded; the attempt is not a success."""

    def __init__(self, message: str, operation: str, job_id: str | None = None):
        super().__init__(message)
        self.operation = operation
        self.job_id = job_id
        self.recoverable = False


class DeliveryCoordinator:
    def __init__(self, repository=None, send_timeout: float | None = None):
        self.repository = repository or ReminderJobRepository
        self.send_timeout = send_timeout or settings.TRANSPORT_TIMEOUT_SECONDS

    async def attempt_send(
        self,
        subject_id: str,
        kind: ReminderKind,
        scheduled_for: datetime,
        send_fn: SendFn,
        *,
        period_start: datetime,
        on_failure: FailureHandler | None = None,
    ) -> AttemptResult:
        """
        Run one guarded send for (subject_id, kind, period_start).

        Returns:
            AttemptResult with outcome SENT, DUPLICATE or TRANSPORT_FAILURE

        Raises:
            DeliveryPersistenceError: If reminder state could not be recorded
        """
        try:
            job = await self.repository.insert_pending(subject_id, kind, period_start, scheduled_for)
        except DuplicateReminderError:
            logger.debug(
                "Reminder already owned by another attempt",
                subject_id=subject_id,
                reminder_kind=str(kind),
            )
            return AttemptResult(outcome=AttemptOutcome.DUPLICATE)
        except DatabaseError as e:
            logger.error(
                "Could not record pending reminder",
                subject_id=subject_id,
                reminder_kind=str(kind),
                error=str(e),
            )
            raise DeliveryPersistenceError(
                f"Failed to record pending reminder: {e}", operation="insert_pending"
            ) from e

        result = await guarded_send(send_fn, timeout=self.send_timeout)

        if result.success:
            try:
                job = await self.repository.mark_sent(job.id)
            except (DatabaseError, InvalidTransitionError) as e:
                # Row stays pending, which still blocks a second send this period
                logger.error(
                    "Reminder sent but not marked sent",
                    job_id=job.id,
                    subject_id=subject_id,
                    message_id=result.message_id,
                    error=str(e),
                )
                raise DeliveryPersistenceError(
                    f"Failed to mark reminder sent: {e}", operation="mark_sent", job_id=job.id
                ) from e

            logger.info(
                "Reminder sent",
                job_id=job.id,
                subject_id=subject_id,
                reminder_kind=str(kind),
                message_id=result.message_id,
            )
            return AttemptResult(outcome=AttemptOutcome.SENT, job=job, transport=result)

        return await self._record_failure(job, result, on_failure)

    async def _record_failure(
        self,
        job: ReminderJob,
        result: TransportResult,
        on_failure: FailureHandler | None,
    ) -> AttemptResult:
        handoff_error: Exception | None = None
        retry_at: datetime | None = None

        if on_failure is not None:
            try:
                retry_at = await on_failure(job, result)
            except Exception as e:
                # Leave the reminder retryable rather than silently terminal
                handoff_error = e
                retry_at = datetime.now(UTC)

        try:
            job = await self.repository.mark_failed(job.id, result.error or "send failed", retry_at)
        except (DatabaseError, InvalidTransitionError) as e:
            logger.error("Could not mark reminder failed", job_id=job.id, error=str(e))
            raise DeliveryPersistenceError(
                f"Failed to mark reminder failed: {e}", operation="mark_failed", job_id=job.id
            ) from e

        if handoff_error is not None:
            logger.error(
                "Failure hand-off raised",
                job_id=job.id,
                error=str(handoff_error),
                error_type=type(handoff_error).__name__,
            )
            raise DeliveryPersistenceError(
                f"Failed to hand off transport failure: {handoff_error}",
                operation="failure_handoff",
                job_id=job.id,
            ) from handoff_error

        logger.warning(
            "Reminder send failed",
            job_id=job.id,
            subject_id=job.subject_id,
            reminder_kind=str(job.kind),
            error=result.error,
            retry_at=retry_at.isoformat() if retry_at else None,
        )
        return AttemptResult(outcome=AttemptOutcome.TRANSPORT_FAILURE, job=job, transport=result)


delivery_coordinator = DeliveryCoordinator()
