"""
Cron trigger for the reminder pass.

External schedulers call this instead of (or alongside) the worker loop;
overlapping calls are safe.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from checkin_notifier.auth.operator import cron_dependency
from checkin_notifier.features.reminders.jobs import ReminderDriver, ReminderJobError
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(cron_dependency)])


def get_reminder_driver() -> ReminderDriver:
    return ReminderDriver()


@router.post("/process-reminders")
async def process_reminders(driver: ReminderDriver = Depends(get_reminder_driver)) -> dict:
    try:
        metrics = await driver.run_once()
    except ReminderJobError as e:
        logger.error("Cron reminder pass failed", error=str(e), operation=e.operation)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reminder processing unavailable",
        ) from e

    return {"success": True, **metrics}
