"""
settlement_kernel.domain -- Pure kernel values.

ZERO I/O except ``SystemClock``.
"""

from settlement_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
    ensure_utc,
)
from settlement_kernel.domain.dtos import (
    FAILED_TX_REF,
    AttemptOutcome,
    CancellationReason,
    NotificationIntent,
    NotificationType,
    Obligation,
    ObligationKey,
    SettlementAttempt,
)

__all__ = [
    "FAILED_TX_REF",
    "AttemptOutcome",
    "CancellationReason",
    "Clock",
    "DeterministicClock",
    "NotificationIntent",
    "NotificationType",
    "Obligation",
    "ObligationKey",
    "SettlementAttempt",
    "SystemClock",
    "ensure_utc",
]
