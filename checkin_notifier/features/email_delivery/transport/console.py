"""
Development transport that logs messages instead of sending them.
"""

import uuid

from checkin_notifier.features.email_delivery.domain import TransportResult
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ConsoleTransport:
    provider = "console-dev"

    async def send(
        self, to: str, subject: str, html: str, text: str | None = None
    ) -> TransportResult:
        message_id = f"console-{uuid.uuid4()}"
        logger.info(
            "Console email sent",
            to=to,
            subject=subject,
            message_id=message_id,
            body_preview=(text or html)[:200],
        )
        return TransportResult.ok(message_id)
