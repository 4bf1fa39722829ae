"""
Domain models for email delivery and dead-letter handling.

Transport outcomes are plain values: a failed send is an expected,
frequent event that carries retry metadata, not an exception.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class EmailType(StrEnum):
    REMINDER = "reminder"
    DISCLOSURE = "disclosure"
    VERIFICATION = "verification"
    ADMIN_NOTIFICATION = "admin_notification"


class FailureClassification(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(slots=True, frozen=True)
class TransportResult:
    """Outcome of a single transport send."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    retryable: bool | None = None
    retry_after: float | None = None  # seconds, as hinted by the provider

    @classmethod
    def ok(cls, message_id: str | None = None) -> "TransportResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(
        cls, error: str, retryable: bool | None = None, retry_after: float | None = None
    ) -> "TransportResult":
        return cls(success=False, error=error, retryable=retryable, retry_after=retry_after)


@dataclass(slots=True)
class EmailFailure:
    """Represents an email_failures row."""

    id: str
    email_type: str
    provider: str
    recipient: str
    subject: str
    error_message: str
    retry_count: int
    created_at: datetime
    resolved_at: datetime | None = None
    # Logical send within a secret, e.g. reminder kind and period; None for one-off mail
    secret_id: str | None = None
    send_key: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email_type": self.email_type,
            "provider": self.provider,
            "recipient": self.recipient,
            "subject": self.subject,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "secret_id": self.secret_id,
            "send_key": self.send_key,
        }


@dataclass(slots=True)
class NewEmailFailure:
    """Payload for DeadLetterStore.record()."""

    email_type: str
    provider: str
    recipient: str
    subject: str
    error_message: str
    secret_id: str | None = None
    send_key: str | None = None


@dataclass(slots=True)
class RetryResult:
    success: bool
    error: str | None = None
    permanent: bool = False
    exhausted: bool = False
    next_retry_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "permanent": self.permanent,
            "exhausted": self.exhausted,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


@dataclass(slots=True)
class BatchRetryResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": self.errors,
        }


@dataclass(slots=True)
class DeadLetterStats:
    total: int = 0
    unresolved: int = 0
    permanent: int = 0
    exhausted: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_provider: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "unresolved": self.unresolved,
            "permanent": self.permanent,
            "exhausted": self.exhausted,
            "by_type": self.by_type,
            "by_provider": self.by_provider,
        }
