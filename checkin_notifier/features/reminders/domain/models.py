"""
Domain models for check-in reminders.

ReminderJob rows move through an explicit state machine:
none -> pending -> sent | failed. Anything else is rejected.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum


class ReminderKind(StrEnum):
    ONE_HOUR = "1_hour"
    TWELVE_HOURS = "12_hours"
    TWENTY_FOUR_HOURS = "24_hours"
    THREE_DAYS = "3_days"
    SEVEN_DAYS = "7_days"
    TWENTY_FIVE_PERCENT = "25_percent"
    FIFTY_PERCENT = "50_percent"


# Fixed kinds: how long before the deadline the reminder is due
FIXED_OFFSETS: dict[ReminderKind, timedelta] = {
    ReminderKind.ONE_HOUR: timedelta(hours=1),
    ReminderKind.TWELVE_HOURS: timedelta(hours=12),
    ReminderKind.TWENTY_FOUR_HOURS: timedelta(hours=24),
    ReminderKind.THREE_DAYS: timedelta(days=3),
    ReminderKind.SEVEN_DAYS: timedelta(days=7),
}

# Proportional kinds: fraction of the full period subtracted from the deadline
PROPORTIONAL_FRACTIONS: dict[ReminderKind, float] = {
    ReminderKind.TWENTY_FIVE_PERCENT: 0.75,
    ReminderKind.FIFTY_PERCENT: 0.50,
}

# Remaining-share thresholds used to decide a proportional kind is due
PROPORTIONAL_THRESHOLDS: dict[ReminderKind, float] = {
    ReminderKind.TWENTY_FIVE_PERCENT: 0.25,
    ReminderKind.FIFTY_PERCENT: 0.50,
}


class ReminderStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[ReminderStatus | None, frozenset[ReminderStatus]] = {
    None: frozenset({ReminderStatus.PENDING}),
    ReminderStatus.PENDING: frozenset({ReminderStatus.SENT, ReminderStatus.FAILED}),
    ReminderStatus.SENT: frozenset(),
    ReminderStatus.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised for a reminder status change outside the state machine."""

    def __init__(self, current: ReminderStatus | None, target: ReminderStatus):
        super().__init__(f"Invalid reminder transition: {current or 'none'} -> {target}")
        self.current = current
        self.target = target


def ensure_transition(current: ReminderStatus | None, target: ReminderStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


@dataclass(slots=True)
class ReminderJob:
    """Represents a reminder_jobs row."""

    id: str
    subject_id: str
    kind: ReminderKind
    period_start: datetime
    scheduled_for: datetime
    status: ReminderStatus
    sent_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None
    retry_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class CheckInPeriod:
    """Half-open interval [start, end) of the subject's current period."""

    start: datetime
    end: datetime


@dataclass(slots=True)
class CheckInSubject:
    """Read-only view of a secret owned by the secret store."""

    id: str
    title: str
    owner_email: str
    owner_name: str | None
    check_in_days: int
    last_check_in: datetime | None
    next_check_in: datetime

    @property
    def period(self) -> CheckInPeriod:
        # Recomputed on every read so a fresh check-in starts a new period at once
        start = self.last_check_in or (self.next_check_in - timedelta(days=self.check_in_days))
        return CheckInPeriod(start=start, end=self.next_check_in)
