"""
Service layer for the reminders feature.
"""

from .delivery_coordinator import (
    AttemptOutcome,
    AttemptResult,
    DeliveryCoordinator,
    DeliveryPersistenceError,
    delivery_coordinator,
)
from .period_guard import PeriodGuard, period_guard

__all__ = [
    "AttemptOutcome",
    "AttemptResult",
    "DeliveryCoordinator",
    "DeliveryPersistenceError",
    "delivery_coordinator",
    "PeriodGuard",
    "period_guard",
]
