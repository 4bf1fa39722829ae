"""
Retry policy for email delivery.

Classifies failures as transient or permanent, computes exponential
backoff with jitter and owns the per-email-type retry ceilings.
"""

import random
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from checkin_notifier.config import settings
from checkin_notifier.features.email_delivery.domain import (
    EmailFailure,
    EmailType,
    FailureClassification,
    TransportResult,
)

# Retry ceilings per email type, highest for the most consequential mail
RETRY_LIMITS: dict[str, int] = {
    EmailType.DISCLOSURE: 5,
    EmailType.REMINDER: 3,
    EmailType.VERIFICATION: 2,
    EmailType.ADMIN_NOTIFICATION: 1,
}
DEFAULT_RETRY_LIMIT = 1

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 60.0
JITTER_FACTOR = 0.5

# Checked first: "forbidden ... timeout" is still an authorization failure
PERMANENT_PATTERNS = (
    "invalid email",
    "invalid address",
    "email does not exist",
    "domain not found",
    "recipient rejected",
    "blocked recipient",
    "mailbox not found",
    "user unknown",
    "invalid api key",
    "unauthorized",
    "forbidden",
)

TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "service unavailable",
    "temporarily unavailable",
    "network error",
    "econnrefused",
    "connection refused",
    "etimedout",
    "connection reset",
    "socket hang up",
)

# 4xx other than 429 is permanent, 429 and 5xx are transient. A code only counts
# at the start of the message or after a status word, never inside "host:443".
STATUS_CONTEXT = r"(?:^|\b(?:status|http|code|error|sendgrid)\b)[\s:=]*"
PERMANENT_STATUS = re.compile(STATUS_CONTEXT + r"4(?!29)\d\d\b")
TRANSIENT_STATUS = re.compile(STATUS_CONTEXT + r"(?:429|5\d\d)\b")


@dataclass(slots=True)
class RetryDecision:
    """What to do after a failed send."""

    classification: FailureClassification
    exhausted: bool
    retry_at: datetime | None

    @property
    def should_retry(self) -> bool:
        return self.retry_at is not None


class RetryPolicy:
    """
    Failure classification and backoff math.

    Randomness comes from an injectable ``random.Random`` so callers can
    seed it and assert exact jitter bounds.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        base_delay: float = BASE_DELAY_SECONDS,
        max_delay: float = MAX_DELAY_SECONDS,
    ):
        self.rng = rng or random.Random()
        self.base_delay = base_delay
        self.max_delay = max_delay

    @staticmethod
    def classify(error: str | None) -> FailureClassification:
        """
        Classify an error message from a transport.

        Unrecognised errors default to transient so unknown failures are
        retried instead of silently dropped.
        """
        lower_error = (error or "").lower()

        if any(pattern in lower_error for pattern in PERMANENT_PATTERNS):
            return FailureClassification.PERMANENT
        if PERMANENT_STATUS.search(lower_error):
            return FailureClassification.PERMANENT

        if any(pattern in lower_error for pattern in TRANSIENT_PATTERNS):
            return FailureClassification.TRANSIENT
        if TRANSIENT_STATUS.search(lower_error):
            return FailureClassification.TRANSIENT

        return FailureClassification.TRANSIENT

    def classify_result(self, result: TransportResult) -> FailureClassification:
        """Prefer the transport's own retryable flag, then fall back to keywords."""
        if result.retryable is True:
            return FailureClassification.TRANSIENT
        if result.retryable is False:
            return FailureClassification.PERMANENT
        return self.classify(result.error)

    def backoff_delay(
        self, attempt: int, base: float | None = None, max_delay: float | None = None
    ) -> float:
        """
        Exponential backoff with proportional jitter.

        delay = min(base * 2^(attempt-1), max) + uniform[0, 0.5 * that term)

        Args:
            attempt: Retry attempt number (1-indexed)
            base: Base delay, in whatever unit the caller works in
            max_delay: Cap for the pre-jitter term

        Returns:
            Delay in the same unit as ``base``
        """
        base = self.base_delay if base is None else base
        max_delay = self.max_delay if max_delay is None else max_delay
        attempt = max(1, attempt)

        exponential = base * (2 ** (attempt - 1))
        capped = min(exponential, max_delay)
        jitter = self.rng.random() * capped * JITTER_FACTOR

        return capped + jitter

    @staticmethod
    def retry_limit(email_type: str) -> int:
        return RETRY_LIMITS.get(email_type, DEFAULT_RETRY_LIMIT)

    def is_exhausted(self, failure: EmailFailure) -> bool:
        return failure.retry_count >= self.retry_limit(failure.email_type)

    def can_retry(self, failure: EmailFailure) -> bool:
        return (
            not failure.is_resolved
            and self.classify(failure.error_message) == FailureClassification.TRANSIENT
            and not self.is_exhausted(failure)
        )

    def decide(
        self,
        failure: EmailFailure,
        result: TransportResult | None = None,
        now: datetime | None = None,
    ) -> RetryDecision:
        """
        Decide whether a recorded failure gets another automated attempt.

        Permanent failures skip retry regardless of remaining budget. When
        a retry is allowed, ``retry_at`` is now plus the backoff for the
        next attempt, raised to the provider's Retry-After hint if larger.
        """
        now = now or datetime.now(UTC)
        if result is not None:
            classification = self.classify_result(result)
        else:
            classification = self.classify(failure.error_message)

        if classification == FailureClassification.PERMANENT:
            return RetryDecision(classification=classification, exhausted=False, retry_at=None)

        if self.is_exhausted(failure):
            return RetryDecision(classification=classification, exhausted=True, retry_at=None)

        delay = self.backoff_delay(failure.retry_count + 1)
        if result is not None and result.retry_after:
            delay = max(delay, result.retry_after)

        return RetryDecision(
            classification=classification,
            exhausted=False,
            retry_at=now + timedelta(seconds=delay),
        )


retry_policy = RetryPolicy(**settings.get_retry_config())
