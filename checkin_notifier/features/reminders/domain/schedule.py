"""
Reminder schedule math.

``compute_scheduled_for`` depends only on the deadline and the period
length; it never reads the clock, so recomputing it later yields the same
historical value.
"""

from datetime import UTC, datetime, timedelta

from .models import (
    FIXED_OFFSETS,
    PROPORTIONAL_FRACTIONS,
    PROPORTIONAL_THRESHOLDS,
    ReminderKind,
)

SECONDS_PER_DAY = 86_400

# Most urgent first; the first threshold the subject is inside wins
FIXED_PRIORITY = (
    ReminderKind.ONE_HOUR,
    ReminderKind.TWELVE_HOURS,
    ReminderKind.TWENTY_FOUR_HOURS,
    ReminderKind.THREE_DAYS,
    ReminderKind.SEVEN_DAYS,
)
PROPORTIONAL_PRIORITY = (
    ReminderKind.TWENTY_FIVE_PERCENT,
    ReminderKind.FIFTY_PERCENT,
)


def period_length(period_length_days: float) -> timedelta:
    # Fixed 24h days; calendar arithmetic would drift across DST changes
    return timedelta(seconds=period_length_days * SECONDS_PER_DAY)


def _as_utc(instant: datetime) -> datetime:
    # Aware arithmetic in a DST zone is wall-clock arithmetic; UTC is absolute
    return instant.astimezone(UTC) if instant.tzinfo is not None else instant


def compute_scheduled_for(
    kind: ReminderKind, next_check_in: datetime, period_length_days: float
) -> datetime:
    """
    Instant a reminder of ``kind`` is logically due.

    Fixed kinds subtract a constant offset; proportional kinds subtract
    their fraction of the full period.
    """
    next_check_in = _as_utc(next_check_in)
    if kind in FIXED_OFFSETS:
        return next_check_in - FIXED_OFFSETS[kind]
    return next_check_in - period_length(period_length_days) * PROPORTIONAL_FRACTIONS[kind]


def select_due_kind(
    next_check_in: datetime, check_in_days: float, now: datetime
) -> ReminderKind | None:
    """Most urgent reminder kind whose threshold ``now`` has crossed, if any."""
    remaining = next_check_in - now
    if remaining <= timedelta(0):
        return None

    for kind in FIXED_PRIORITY:
        if remaining <= FIXED_OFFSETS[kind]:
            return kind

    total = period_length(check_in_days)
    if total <= timedelta(0):
        return None

    remaining_share = remaining / total
    for kind in PROPORTIONAL_PRIORITY:
        if remaining_share <= PROPORTIONAL_THRESHOLDS[kind]:
            return kind

    return None
