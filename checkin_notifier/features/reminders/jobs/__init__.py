"""
Job runners for the reminders feature.
"""

from .reminder_job import (
    ReminderDriver,
    ReminderJobError,
    ReminderJobMetrics,
    SubjectOutcome,
    run_reminder_job,
    start_reminder_scheduler,
)

__all__ = [
    "ReminderDriver",
    "ReminderJobError",
    "ReminderJobMetrics",
    "SubjectOutcome",
    "run_reminder_job",
    "start_reminder_scheduler",
]
