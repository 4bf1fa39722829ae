"""
Domain subpackage for check-in reminders.
"""

from .models import (
    CheckInPeriod,
    CheckInSubject,
    InvalidTransitionError,
    ReminderJob,
    ReminderKind,
    ReminderStatus,
    ensure_transition,
)
from .schedule import compute_scheduled_for, select_due_kind

__all__ = [
    "CheckInPeriod",
    "CheckInSubject",
    "InvalidTransitionError",
    "ReminderJob",
    "ReminderKind",
    "ReminderStatus",
    "compute_scheduled_for",
    "ensure_transition",
    "select_due_kind",
]
