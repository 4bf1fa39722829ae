"""
Email delivery feature package.

Transports, retry policy and the dead-letter store for failed sends,
plus the operator API over the store.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as email_failures_router  # noqa: F401
from .domain.models import EmailFailure, EmailType, TransportResult  # noqa: F401
from .services.dead_letter_store import DeadLetterStore, dead_letter_store  # noqa: F401
from .services.retry_policy import RetryPolicy, retry_policy  # noqa: F401
