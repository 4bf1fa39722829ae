"""
Email transports and the provider factory.
"""

from checkin_notifier.config import settings

from .base import EmailTransport, SendFn, guarded_send
from .console import ConsoleTransport
from .sendgrid import SendGridTransport

TRANSPORTS = {
    ConsoleTransport.provider: ConsoleTransport,
    SendGridTransport.provider: SendGridTransport,
}


def get_email_transport(provider: str | None = None) -> EmailTransport:
    """Build the transport configured by EMAIL_PROVIDER."""
    name = (provider or settings.EMAIL_PROVIDER).strip().lower()
    if name not in TRANSPORTS:
        raise ValueError(
            f"Unknown email provider '{name}'. Available: {', '.join(sorted(TRANSPORTS))}"
        )
    return TRANSPORTS[name]()


__all__ = [
    "ConsoleTransport",
    "EmailTransport",
    "SendFn",
    "SendGridTransport",
    "get_email_transport",
    "guarded_send",
]
