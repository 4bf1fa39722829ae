"""
Dead-letter store for failed email deliveries.

Durable record of failed sends with the operator tooling around it:
query, statistics, manual single and batch retry, resolution and
retention cleanup. Nothing here retries on its own; every retry is an
explicit call.
"""

from collections.abc import Awaitable, Callable

from checkin_notifier.config import settings
from checkin_notifier.features.email_delivery.domain import (
    BatchRetryResult,
    DeadLetterStats,
    EmailFailure,
    FailureClassification,
    NewEmailFailure,
    RetryResult,
    TransportResult,
)
from checkin_notifier.features.email_delivery.repository.email_failure_repository import (
    EmailFailureRepository,
)
from checkin_notifier.features.email_delivery.services.retry_policy import (
    RetryPolicy,
    retry_policy,
)
from checkin_notifier.features.email_delivery.transport import guarded_send
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RetrySendFn = Callable[[EmailFailure], Awaitable[TransportResult]]


class EmailFailureNotFoundError(Exception):
    """Raised when an email failure id does not exist."""

    def __init__(self, failure_id: str):
        super().__init__(f"Email failure {failure_id} not found")
        self.failure_id = failure_id


class DeadLetterStore:
    """Operator-facing recovery for failed email deliveries."""

    def __init__(self, repository=None, policy: RetryPolicy | None = None):
        self.repository = repository or EmailFailureRepository
        self.policy = policy or retry_policy

    async def record(self, failure: NewEmailFailure) -> EmailFailure:
        """Insert a failure or increment retry_count on the open row for the same send."""
        recorded = await self.repository.upsert_unresolved(
            failure, self.policy.retry_limit(failure.email_type)
        )
        logger.warning(
            "Email failure recorded",
            failure_id=recorded.id,
            email_type=recorded.email_type,
            provider=recorded.provider,
            retry_count=recorded.retry_count,
            error=recorded.error_message,
        )
        return recorded

    async def get(self, failure_id: str) -> EmailFailure:
        failure = await self.repository.get(failure_id)
        if failure is None:
            raise EmailFailureNotFoundError(failure_id)
        return failure

    async def query(
        self,
        email_type: str | None = None,
        provider: str | None = None,
        recipient: str | None = None,
        unresolved_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EmailFailure]:
        return await self.repository.query(
            email_type=email_type,
            provider=provider,
            recipient=recipient,
            unresolved_only=unresolved_only,
            limit=limit,
            offset=offset,
        )

    async def stats(self) -> DeadLetterStats:
        failures = await self.repository.list_all()
        stats = DeadLetterStats(total=len(failures))

        for failure in failures:
            stats.by_type[failure.email_type] = stats.by_type.get(failure.email_type, 0) + 1
            stats.by_provider[failure.provider] = stats.by_provider.get(failure.provider, 0) + 1

            if failure.is_resolved:
                continue
            stats.unresolved += 1
            if self.policy.classify(failure.error_message) == FailureClassification.PERMANENT:
                stats.permanent += 1
            if self.policy.is_exhausted(failure):
                stats.exhausted += 1

        return stats

    async def retryable_failures(self, email_type: str | None = None) -> list[EmailFailure]:
        failures = await self.repository.query(
            email_type=email_type, unresolved_only=True, limit=1000
        )
        return [f for f in failures if self.policy.can_retry(f)]

    async def recipient_failures(self, recipient: str, limit: int = 10) -> list[EmailFailure]:
        # Repository orders newest first
        return await self.repository.query(recipient=recipient, limit=limit)

    async def failures_by_type(self, email_type: str) -> list[dict]:
        failures = await self.repository.query(email_type=email_type, limit=1000)
        annotated = []
        for failure in failures:
            entry = failure.to_dict()
            entry["classification"] = str(self.policy.classify(failure.error_message))
            entry["retry_limit"] = self.policy.retry_limit(failure.email_type)
            entry["can_retry"] = self.policy.can_retry(failure)
            annotated.append(entry)
        return annotated

    async def manual_retry(self, failure_id: str, send_fn: RetrySendFn) -> RetryResult:
        """
        Operator-triggered retry, run once and without waiting out any backoff.

        Resolved, permanent and exhausted failures are rejected before
        send_fn is invoked.

        Raises:
            EmailFailureNotFoundError: If the id does not exist
        """
        failure = await self.get(failure_id)

        if failure.is_resolved:
            return RetryResult(success=False, error="Failure already resolved")

        if self.policy.classify(failure.error_message) == FailureClassification.PERMANENT:
            return RetryResult(
                success=False, permanent=True, error="Permanent failure - not retrying"
            )

        if self.policy.is_exhausted(failure):
            limit = self.policy.retry_limit(failure.email_type)
            return RetryResult(
                success=False,
                exhausted=True,
                error=f"Retry limit exceeded ({limit} attempts)",
            )

        result = await guarded_send(
            lambda: send_fn(failure), timeout=settings.TRANSPORT_TIMEOUT_SECONDS
        )

        if result.success:
            await self.repository.mark_resolved(failure.id)
            logger.info(
                "Email failure resolved by manual retry",
                failure_id=failure.id,
                email_type=failure.email_type,
                message_id=result.message_id,
            )
            return RetryResult(success=True)

        error = result.error or "Retry failed"
        updated = await self.repository.increment_retry(
            failure.id, error, self.policy.retry_limit(failure.email_type)
        )
        decision = self.policy.decide(updated or failure, result)

        logger.warning(
            "Manual retry failed",
            failure_id=failure.id,
            email_type=failure.email_type,
            retry_count=(updated or failure).retry_count,
            classification=str(decision.classification),
            exhausted=decision.exhausted,
            error=error,
        )

        return RetryResult(
            success=False,
            error=error,
            permanent=decision.classification == FailureClassification.PERMANENT,
            exhausted=decision.exhausted,
            next_retry_at=decision.retry_at,
        )

    async def batch_retry(self, failure_ids: list[str], send_fn: RetrySendFn) -> BatchRetryResult:
        """Apply manual_retry to each id; one failure never aborts the batch."""
        batch = BatchRetryResult(total=len(failure_ids))

        for failure_id in failure_ids:
            try:
                result = await self.manual_retry(failure_id, send_fn)
            except EmailFailureNotFoundError:
                batch.failed += 1
                batch.errors.append({"id": failure_id, "error": "Failure not found"})
                continue
            except Exception as e:
                logger.error("Batch retry item failed", failure_id=failure_id, error=str(e))
                batch.failed += 1
                batch.errors.append({"id": failure_id, "error": str(e)})
                continue

            if result.success:
                batch.successful += 1
            else:
                batch.failed += 1
                batch.errors.append({"id": failure_id, "error": result.error or "Unknown error"})

        logger.info(
            "Batch retry completed",
            total=batch.total,
            successful=batch.successful,
            failed=batch.failed,
        )
        return batch

    async def mark_resolved(self, failure_id: str) -> EmailFailure:
        """
        Resolve without attempting delivery. Resolving twice is a no-op.

        Raises:
            EmailFailureNotFoundError: If the id does not exist
        """
        resolved = await self.repository.mark_resolved(failure_id)
        if resolved is None:
            raise EmailFailureNotFoundError(failure_id)

        logger.info("Email failure marked resolved", failure_id=failure_id)
        return resolved

    async def resolve_open(
        self,
        email_type: str,
        recipient: str,
        subject: str,
        secret_id: str | None = None,
        send_key: str | None = None,
    ) -> EmailFailure | None:
        """Resolve the open failure for a send that has since gone through."""
        failure = await self.repository.find_unresolved(
            email_type, recipient, subject, secret_id, send_key
        )
        if failure is None:
            return None
        return await self.mark_resolved(failure.id)

    async def resolve_superseded(self, email_type: str, secret_id: str, send_key: str) -> int:
        """
        Close open failures for a secret that belong to an earlier send.

        A new period or a more urgent reminder kind replaces whatever was
        still backing off, so those rows stop counting against any budget.
        """
        resolved = await self.repository.resolve_superseded(email_type, secret_id, send_key)
        if resolved:
            logger.info(
                "Superseded email failures resolved",
                email_type=email_type,
                secret_id=secret_id,
                send_key=send_key,
                count=resolved,
            )
        return resolved

    async def cleanup(self, retention_days: int | None = None) -> int:
        """Delete resolved failures older than the retention window."""
        retention_days = (
            settings.EMAIL_FAILURE_RETENTION_DAYS if retention_days is None else retention_days
        )
        return await self.repository.delete_resolved_before(retention_days)


dead_letter_store = DeadLetterStore()
