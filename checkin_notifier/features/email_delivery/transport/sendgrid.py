"""
SendGrid v3 mail-send transport over httpx.

Maps HTTP outcomes onto TransportResult:
- 2xx: success, message id from the X-Message-Id header
- 429 / 5xx: retryable, honouring Retry-After when present
- other 4xx: permanent
- network errors and timeouts: retryable
"""

import httpx

from checkin_notifier.config import settings
from checkin_notifier.features.email_delivery.domain import TransportResult
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
        messages = [e.get("message", "") for e in errors if isinstance(e, dict)]
        if messages:
            return "; ".join(m for m in messages if m)
    except ValueError:
        pass
    return response.text[:200]


class SendGridTransport:
    provider = "sendgrid"

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key or settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM
        self.timeout = timeout or settings.TRANSPORT_TIMEOUT_SECONDS
        self._client = client

        if not self.api_key:
            raise ValueError("SENDGRID_API_KEY is required for the sendgrid transport")

    def _payload(self, to: str, subject: str, html: str, text: str | None) -> dict:
        content = []
        if text:
            content.append({"type": "text/plain", "value": text})
        content.append({"type": "text/html", "value": html})
        return {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": content,
        }

    async def send(
        self, to: str, subject: str, html: str, text: str | None = None
    ) -> TransportResult:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = self._payload(to, subject, html, text)

        try:
            if self._client is not None:
                response = await self._client.post(
                    SENDGRID_SEND_URL, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)

        except httpx.TimeoutException as e:
            logger.warning("SendGrid request timed out", to=to, error=str(e))
            return TransportResult.failed(f"SendGrid timeout: {e}", retryable=True)
        except httpx.HTTPError as e:
            logger.warning("SendGrid network error", to=to, error=str(e))
            return TransportResult.failed(f"SendGrid network error: {e}", retryable=True)

        if response.is_success:
            return TransportResult.ok(response.headers.get("X-Message-Id"))

        status_code = response.status_code
        detail = _error_detail(response)
        error = f"SendGrid {status_code}: {detail}"

        if status_code == 429 or status_code >= 500:
            return TransportResult.failed(
                error,
                retryable=True,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        return TransportResult.failed(error, retryable=False)
