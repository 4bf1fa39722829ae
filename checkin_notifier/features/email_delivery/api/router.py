"""
Operator endpoints for the email dead-letter store.

Every route requires the ADMIN_TOKEN bearer. Retries run once,
immediately, outside any automated backoff schedule.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from checkin_notifier.auth.operator import operator_dependency
from checkin_notifier.features.email_delivery.domain import (
    EmailFailure,
    EmailType,
    TransportResult,
)
from checkin_notifier.features.email_delivery.services import (
    DeadLetterStore,
    EmailFailureNotFoundError,
    dead_letter_store,
)
from checkin_notifier.features.email_delivery.transport import EmailTransport, get_email_transport
from checkin_notifier.features.reminders.services.reminder_email import compose_generic_reminder
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_BATCH_SIZE = 100

# Types whose original content cannot be rebuilt from the failure row
NOT_RESENDABLE: dict[str, str] = {
    EmailType.DISCLOSURE: "Cannot retry disclosure email - original content not available",
    EmailType.ADMIN_NOTIFICATION: "Cannot retry admin notification - use manual send",
    EmailType.VERIFICATION: "Cannot retry verification email - generate new token",
}

router = APIRouter(
    prefix="/admin/email-failures",
    tags=["admin-email-failures"],
    dependencies=[Depends(operator_dependency)],
)


class BatchRetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    failure_ids: list[str] = Field(default_factory=list, alias="failureIds")


def get_dead_letter_store() -> DeadLetterStore:
    return dead_letter_store


def get_retry_transport() -> EmailTransport:
    return get_email_transport()


def build_retry_send_fn(transport: EmailTransport):
    """Re-send callable for manual retries; only reminders can be rebuilt."""

    async def send(failure: EmailFailure) -> TransportResult:
        if failure.email_type != EmailType.REMINDER:
            reason = NOT_RESENDABLE.get(
                failure.email_type, f"Unknown email type: {failure.email_type}"
            )
            return TransportResult.failed(
                f"Manual intervention required: {reason}", retryable=False
            )

        email = compose_generic_reminder(failure.subject)
        return await transport.send(failure.recipient, email.subject, email.html, email.text)

    return send


@router.get("")
async def list_email_failures(
    email_type: str | None = None,
    provider: str | None = None,
    recipient: str | None = None,
    unresolved_only: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    stats: bool = False,
    store: DeadLetterStore = Depends(get_dead_letter_store),
) -> dict:
    failures = await store.query(
        email_type=email_type,
        provider=provider,
        recipient=recipient,
        unresolved_only=unresolved_only,
        limit=limit,
        offset=offset,
    )

    response = {
        "failures": [failure.to_dict() for failure in failures],
        "count": len(failures),
        "limit": limit,
        "offset": offset,
    }
    if stats:
        response["stats"] = (await store.stats()).to_dict()
    return response


@router.post("/batch-retry")
async def batch_retry_email_failures(
    body: BatchRetryRequest,
    store: DeadLetterStore = Depends(get_dead_letter_store),
    transport: EmailTransport = Depends(get_retry_transport),
) -> dict:
    if not body.failure_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="failureIds must be a non-empty list",
        )
    if len(body.failure_ids) > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum batch size is {MAX_BATCH_SIZE}",
        )

    result = await store.batch_retry(body.failure_ids, build_retry_send_fn(transport))
    return result.to_dict()


@router.post("/{failure_id}/retry")
async def retry_email_failure(
    failure_id: str,
    store: DeadLetterStore = Depends(get_dead_letter_store),
    transport: EmailTransport = Depends(get_retry_transport),
) -> dict:
    try:
        result = await store.manual_retry(failure_id, build_retry_send_fn(transport))
    except EmailFailureNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Email failure not found"
        ) from e

    logger.info(
        "Manual email retry requested",
        failure_id=failure_id,
        success=result.success,
        permanent=result.permanent,
        exhausted=result.exhausted,
    )
    return result.to_dict()


@router.delete("/{failure_id}")
async def resolve_email_failure(
    failure_id: str,
    store: DeadLetterStore = Depends(get_dead_letter_store),
) -> dict:
    try:
        failure = await store.mark_resolved(failure_id)
    except EmailFailureNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Email failure not found"
        ) from e

    return {"success": True, "failure": failure.to_dict()}
