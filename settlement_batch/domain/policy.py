"""
Pure settlement policy functions.

Contract:
    ``should_cancel``, ``cancellation_decision``, ``terminal_reason``,
    ``is_due`` and ``advance_next_due`` are PURE -- no I/O, no side effects.
    Every timestamp comes from the caller (no datetime.now() calls).

Architecture: settlement_batch/domain.  ZERO I/O.

Invariants enforced:
    - The auto-cancel threshold is a single configuration constant, never a
      per-obligation value.
    - The cancellation policy is consulted only after a failed settlement;
      a terminal no-op never counts as a failure.
    - ``next_due`` only moves forward, by exactly one interval per success.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from settlement_kernel.domain.clock import ensure_utc
from settlement_batch.domain.types import CancellationReason, Obligation

AUTO_CANCEL_THRESHOLD = 3


@dataclass(frozen=True)
class CancellationDecision:
    cancel: bool
    reason: CancellationReason | None = None


def should_cancel(
    failed_payment_count: int,
    threshold: int = AUTO_CANCEL_THRESHOLD,
) -> bool:
    """True once consecutive failures reach the threshold."""
    if threshold <= 0:
        raise ValueError(f"threshold must be positive, got {threshold}")
    return failed_payment_count >= threshold


def cancellation_decision(
    failed_payment_count: int,
    threshold: int = AUTO_CANCEL_THRESHOLD,
) -> CancellationDecision:
    if should_cancel(failed_payment_count, threshold):
        return CancellationDecision(
            cancel=True,
            reason=CancellationReason.AUTO_CANCELLED_FAILURES,
        )
    return CancellationDecision(cancel=False)


def cap_reached(payment_count: int, max_payments: int | None) -> bool:
    return max_payments is not None and payment_count >= max_payments


def terminal_reason(obligation: Obligation, now: datetime) -> CancellationReason | None:
    """Return why ``obligation`` must be terminated before settling, if at all.

    The payment cap is checked before the end date, so an obligation that
    hit both reports ``expired_max_payments``.
    """
    if cap_reached(obligation.payment_count, obligation.max_payments):
        return CancellationReason.EXPIRED_MAX_PAYMENTS
    if obligation.end_date is not None and ensure_utc(now) > ensure_utc(obligation.end_date):
        return CancellationReason.EXPIRED_END_DATE
    return None


def is_due(obligation: Obligation, now: datetime) -> bool:
    return ensure_utc(obligation.next_due) <= ensure_utc(now)


def advance_next_due(next_due: datetime, interval_seconds: int) -> datetime:
    """Next due time after one success: previous due time plus one interval.

    Anchored on the previous due time, not on the settlement time, so a
    late cycle does not drift the schedule.
    """
    if interval_seconds <= 0:
        raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
    return ensure_utc(next_due) + timedelta(seconds=interval_seconds)
