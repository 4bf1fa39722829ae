"""
Email Failure Cleanup Job - retention for the dead-letter table.

Deletes resolved email failures older than EMAIL_FAILURE_RETENTION_DAYS.
Unresolved failures are never touched; they stay until an operator acts.
"""

import asyncio
from datetime import UTC, datetime

from checkin_notifier.config import settings
from checkin_notifier.features.email_delivery.services import DeadLetterStore, dead_letter_store
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLEANUP_INTERVAL_HOURS = 24


class EmailFailureCleanupJob:
    """Background job enforcing dead-letter retention."""

    def __init__(self, store: DeadLetterStore | None = None):
        self.store = store or dead_letter_store

    async def run_cleanup(self, retention_days: int | None = None) -> dict:
        """
        Run one cleanup pass.

        Returns:
            dict: {"success": bool, "deleted": int, "retention_days": int, "errors": list}
        """
        retention_days = (
            settings.EMAIL_FAILURE_RETENTION_DAYS if retention_days is None else retention_days
        )
        start_time = datetime.now(UTC)
        result = {"success": True, "deleted": 0, "retention_days": retention_days, "errors": []}

        logger.info("Starting email failure cleanup", retention_days=retention_days)

        try:
            result["deleted"] = await self.store.cleanup(retention_days)
        except Exception as e:
            error_msg = f"Failed to delete resolved email failures: {e}"
            logger.error(error_msg, error_type=type(e).__name__)
            result["success"] = False
            result["errors"].append(error_msg)

        logger.info(
            "Email failure cleanup completed",
            duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
            result=result,
        )
        return result


email_failure_cleanup_job = EmailFailureCleanupJob()


async def start_email_failure_cleanup_scheduler():
    """Run cleanup every CLEANUP_INTERVAL_HOURS until cancelled."""
    logger.info("Starting email failure cleanup scheduler", interval_hours=CLEANUP_INTERVAL_HOURS)

    while True:
        await email_failure_cleanup_job.run_cleanup()
        await asyncio.sleep(CLEANUP_INTERVAL_HOURS * 3600)
