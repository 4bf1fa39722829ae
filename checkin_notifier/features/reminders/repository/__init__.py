"""
Repositories for the reminders feature.
"""

from .reminder_job_repository import (
    DuplicateReminderError,
    ReminderJobRepository,
    ReminderRepositoryError,
)
from .subject_repository import SubjectRepository

__all__ = [
    "DuplicateReminderError",
    "ReminderJobRepository",
    "ReminderRepositoryError",
    "SubjectRepository",
]
