"""
settlement_batch.domain.types -- Pure frozen dataclasses for the settlement engine.

ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  Obligation-level values (ObligationKey, Obligation,
CancellationReason, NotificationIntent) live in the kernel and are
re-exported here so services import one module.

Invariants enforced:
    - Every result DTO is immutable once produced.
    - BatchSettlementResult counts are derived from its items, never set
      independently.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

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
    "AutomationStatus",
    "BatchSettlementResult",
    "CancellationReason",
    "CycleResult",
    "CycleStatus",
    "CycleTrigger",
    "EmissionContext",
    "ExecutorStats",
    "ItemOutcome",
    "NotificationIntent",
    "NotificationType",
    "Obligation",
    "ObligationKey",
    "ResolverCheck",
    "SchedulerState",
    "SettlementAttempt",
    "SettlementAuthorization",
    "SettlementItemResult",
    "SettlementReceipt",
    "STORE_ERROR_REASON",
    "SkipReason",
    "TriggerResult",
]


# =============================================================================
# Status enums
# =============================================================================


class ItemOutcome(str, Enum):
    """Per-obligation outcome within one batch."""

    SUCCESS = "success"  # Ledger confirmed the settlement
    FAILED = "failed"  # Declined, timed out, errored, or store error
    TERMINATED = "terminated"  # Cap or end date reached before the ledger call
    SKIPPED = "skipped"  # Not found, already inactive, or not yet due


class SkipReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_DUE = "not_due"


class CycleTrigger(str, Enum):
    """What started a settlement cycle."""

    TIMER = "timer"
    MANUAL = "manual"


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"  # Fatal error; no further items attempted


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


# Failure reason recorded when the store could not persist an item.
STORE_ERROR_REASON = "store_error"


# =============================================================================
# Ledger capability DTOs
# =============================================================================


@dataclass(frozen=True)
class SettlementReceipt:
    """Ledger response to one settlement call.

    ``confirmed`` is False when the transaction was mined but reverted.
    """

    tx_ref: str | None
    confirmed: bool = True


@dataclass(frozen=True)
class SettlementAuthorization:
    """The two identities allowed to drive the executor."""

    automation_identity: str
    owner_identity: str

    def allows(self, caller: str) -> bool:
        return caller in (self.automation_identity, self.owner_identity)


# =============================================================================
# Resolver DTOs
# =============================================================================


@dataclass(frozen=True)
class ResolverCheck:
    """Answer to "is there work?" plus the bounded key list to hand over."""

    can_exec: bool
    keys: tuple[ObligationKey, ...] = ()


# =============================================================================
# Executor DTOs
# =============================================================================


@dataclass(frozen=True)
class SettlementItemResult:
    """Immutable result of processing a single obligation.

    ``cancellation_reason`` is set whenever this item moved the obligation
    to the terminal state: a TERMINATED no-op, an auto-cancel after a
    FAILED settlement, or the cap being reached by a SUCCESS.

    ``store_error`` marks a SUCCESS the ledger confirmed but the store could
    not record; the counters and ``next_due`` are then unknown (None).
    """

    key: ObligationKey
    outcome: ItemOutcome
    tx_ref: str | None = None
    failure_reason: str | None = None
    skip_reason: SkipReason | None = None
    cancellation_reason: CancellationReason | None = None
    payment_count: int | None = None
    failed_payment_count: int | None = None
    next_due: datetime | None = None
    duration_ms: int = 0
    store_error: bool = False

    @property
    def cancelled(self) -> bool:
        return self.cancellation_reason is not None


@dataclass(frozen=True)
class BatchSettlementResult:
    """Immutable result of one ``process_batch`` call."""

    batch_id: int
    items: tuple[SettlementItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def _count(self, outcome: ItemOutcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    @property
    def success_count(self) -> int:
        return self._count(ItemOutcome.SUCCESS)

    @property
    def failure_count(self) -> int:
        return self._count(ItemOutcome.FAILED)

    @property
    def terminal_count(self) -> int:
        return self._count(ItemOutcome.TERMINATED)

    @property
    def skipped_count(self) -> int:
        return self._count(ItemOutcome.SKIPPED)

    @property
    def counts(self) -> tuple[int, int]:
        """(success_count, failure_count), as reported by the ledger executor."""
        return self.success_count, self.failure_count


@dataclass(frozen=True)
class ExecutorStats:
    """In-process executor counters since construction."""

    total_processed: int = 0
    total_batches: int = 0
    total_failures: int = 0


@dataclass(frozen=True)
class EmissionContext:
    """Where an outcome came from, for the audit record."""

    actor_id: UUID
    batch_id: int | None = None
    cycle_id: str | None = None


# =============================================================================
# Scheduler DTOs
# =============================================================================


@dataclass(frozen=True)
class CycleResult:
    """Summary of one settlement cycle."""

    cycle_id: str
    trigger: CycleTrigger
    status: CycleStatus
    started_at: datetime
    completed_at: datetime
    due_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    terminal_count: int = 0
    skipped_count: int = 0
    batch_id: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class TriggerResult:
    """Whether a requested cycle ran; never carries per-item results."""

    accepted: bool
    cycle: CycleResult | None = None


@dataclass(frozen=True)
class AutomationStatus:
    running: bool
    due_count: int
    last_checked: datetime | None = None
    last_cycle: CycleResult | None = None
    cycle_count: int = 0
