"""
DTOs -- Pure obligation data transfer objects.

Responsibility:
    Defines the immutable values that cross the persistence boundary:
    ObligationKey (identity), Obligation (snapshot of a mirrored obligation),
    SettlementAttempt (audit record) and NotificationIntent, plus the
    enumerations shared by models and services.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies.  Models convert to and from these types with
    ``to_dto()`` / ``from_dto()``; services above the kernel accept and
    return these types, never ORM rows.

Invariants enforced:
    - ObligationKey is the business identity (network id + ledger id) and
      is hashable, ordered and round-trips through its string form.
    - Obligation amounts are integers in the smallest currency unit.
    - interval_seconds > 0 on every Obligation.

Failure modes:
    - ValueError from ObligationKey.parse on a malformed key string.
    - ValueError on Obligation with a non-positive interval or negative
      amount / counters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

# =============================================================================
# Enumerations
# =============================================================================


class CancellationReason(str, Enum):
    """Why an obligation was moved to the terminal inactive state."""

    EXPIRED_MAX_PAYMENTS = "expired_max_payments"
    EXPIRED_END_DATE = "expired_end_date"
    AUTO_CANCELLED_FAILURES = "auto_cancelled_failures"


class AttemptOutcome(str, Enum):
    """Outcome stored on a settlement attempt record."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class NotificationType(str, Enum):
    """Kind of notification intent recorded for a party."""

    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    OBLIGATION_CANCELLED = "OBLIGATION_CANCELLED"


# Transaction reference stored when the ledger never produced one.
FAILED_TX_REF = "failed"


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True, order=True)
class ObligationKey:
    """
    Business identity of an obligation on one ledger network.

    String form is ``"<network_id>:<ledger_id>"``.
    """

    network_id: int
    ledger_id: int

    def __str__(self) -> str:
        return f"{self.network_id}:{self.ledger_id}"

    @classmethod
    def parse(cls, value: str) -> ObligationKey:
        network, sep, ledger = value.strip().partition(":")
        if not sep:
            raise ValueError(
                f"Obligation key must look like '<network_id>:<ledger_id>', got {value!r}"
            )
        try:
            return cls(network_id=int(network), ledger_id=int(ledger))
        except ValueError:
            raise ValueError(f"Obligation key parts must be integers: {value!r}") from None


# =============================================================================
# Obligation snapshot
# =============================================================================


@dataclass(frozen=True)
class Obligation:
    """
    Immutable snapshot of one obligation row.

    ``next_due`` and ``payment_count`` describe the state at read time; the
    executor always re-reads under a row lock before acting.
    """

    key: ObligationKey
    payer_id: str
    payee_id: str
    payer_address: str
    payee_address: str
    amount: int
    interval_seconds: int
    next_due: datetime
    currency: str = "USDC"
    service_name: str | None = None
    end_date: datetime | None = None
    max_payments: int | None = None
    fee_amount: int = 0
    fee_recipient: str | None = None
    fee_currency: str | None = None
    payment_count: int = 0
    failed_payment_count: int = 0
    is_active: bool = True
    cancelled_at: datetime | None = None
    cancellation_reason: CancellationReason | None = None
    last_settled_at: datetime | None = None
    last_synced_at: datetime | None = None
    obligation_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError(
                f"interval_seconds must be positive, got {self.interval_seconds}"
            )
        if self.amount < 0:
            raise ValueError(f"amount cannot be negative, got {self.amount}")
        if self.payment_count < 0 or self.failed_payment_count < 0:
            raise ValueError("payment counters cannot be negative")
        if self.max_payments is not None and self.max_payments <= 0:
            raise ValueError(
                f"max_payments must be positive when set, got {self.max_payments}"
            )


# =============================================================================
# Side-effect records
# =============================================================================


@dataclass(frozen=True)
class SettlementAttempt:
    """One audit record per settlement outcome (append-only)."""

    key: ObligationKey
    amount: int
    fee_amount: int
    outcome: AttemptOutcome
    tx_ref: str
    payer_address: str
    payee_address: str
    attempted_at: datetime
    failure_reason: str | None = None
    cancellation_reason: CancellationReason | None = None
    batch_id: int | None = None
    cycle_id: str | None = None
    attempt_id: UUID | None = None


@dataclass(frozen=True)
class NotificationIntent:
    """A notification to be delivered to one party; delivery is external."""

    recipient_id: str
    notification_type: NotificationType
    title: str
    message: str
    key: ObligationKey
