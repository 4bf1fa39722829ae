"""
Domain subpackage for email delivery.
"""

from .models import (
    BatchRetryResult,
    DeadLetterStats,
    EmailFailure,
    EmailType,
    FailureClassification,
    NewEmailFailure,
    RetryResult,
    TransportResult,
)

__all__ = [
    "BatchRetryResult",
    "DeadLetterStats",
    "EmailFailure",
    "EmailType",
    "FailureClassification",
    "NewEmailFailure",
    "RetryResult",
    "TransportResult",
]
