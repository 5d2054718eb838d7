"""Persistence models for the settlement kernel."""

from settlement_kernel.models.notification import NotificationModel
from settlement_kernel.models.obligation import ObligationModel
from settlement_kernel.models.settlement_attempt import (
    FAILED_TX_REF,
    AttemptOutcome,
    SettlementAttemptModel,
)

__all__ = [
    "FAILED_TX_REF",
    "AttemptOutcome",
    "NotificationModel",
    "ObligationModel",
    "SettlementAttemptModel",
]
