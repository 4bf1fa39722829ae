"""
Service layer for email delivery.
"""

from .dead_letter_store import DeadLetterStore, EmailFailureNotFoundError, dead_letter_store
from .retry_policy import RetryDecision, RetryPolicy, retry_policy

__all__ = [
    "DeadLetterStore",
    "EmailFailureNotFoundError",
    "dead_letter_store",
    "RetryDecision",
    "RetryPolicy",
    "retry_policy",
]
