"""
Check-in reminders feature package.

Schedule math, the per-period duplicate guard, the delivery coordinator
and the periodic driver live together in this slice.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as cron_router  # noqa: F401
from .domain.models import CheckInSubject, ReminderJob, ReminderKind  # noqa: F401
from .jobs.reminder_job import ReminderDriver, run_reminder_job  # noqa: F401
from .services.delivery_coordinator import DeliveryCoordinator, delivery_coordinator  # noqa: F401
from .services.period_guard import PeriodGuard, period_guard  # noqa: F401
