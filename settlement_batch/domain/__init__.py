"""
settlement_batch.domain -- Pure types and policy for the settlement engine.

ZERO I/O.  All types are frozen dataclasses.
"""

from settlement_batch.domain.policy import (
    AUTO_CANCEL_THRESHOLD,
    CancellationDecision,
    cancellation_decision,
    should_cancel,
    terminal_reason,
)
from settlement_batch.domain.types import (
    AutomationStatus,
    BatchSettlementResult,
    CycleResult,
    CycleStatus,
    CycleTrigger,
    ExecutorStats,
    ItemOutcome,
    ObligationKey,
    ResolverCheck,
    SchedulerState,
    SettlementItemResult,
    TriggerResult,
)

__all__ = [
    "AUTO_CANCEL_THRESHOLD",
    "AutomationStatus",
    "BatchSettlementResult",
    "CancellationDecision",
    "CycleResult",
    "CycleStatus",
    "CycleTrigger",
    "ExecutorStats",
    "ItemOutcome",
    "ObligationKey",
    "ResolverCheck",
    "SchedulerState",
    "SettlementItemResult",
    "TriggerResult",
    "cancellation_decision",
    "should_cancel",
    "terminal_reason",
]
