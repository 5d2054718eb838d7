"""
SettlementExecutor -- per-obligation isolated batch settlement.

Contract:
    ``process_batch(keys, caller)`` settles each key independently and
    reduces the per-item results into a BatchSettlementResult.
    ``process_one(key, caller)`` is the administrative single-item retry.

Architecture: settlement_batch/services.  Imports from settlement_batch.domain,
    sibling services (ledger), kernel models and kernel utilities.

Invariants enforced:
    - Per-item isolation: one item's ledger failure or store error never
      aborts or rolls back any other item.
    - Each item's obligation mutation is committed before the next item's
      ledger call; the ledger call itself cannot be rolled back.
    - Re-validation happens on a row re-read under ``SELECT ... FOR UPDATE``
      in this order: missing, already inactive, terminal (cap then end date),
      not yet due.
    - Inactive obligations are never mutated and never reach the ledger.
    - On success ``next_due`` advances from its previous value by exactly one
      interval and ``failed_payment_count`` resets to 0.
    - ``payment_count`` never exceeds ``max_payments``: reaching the cap on a
      success terminates the obligation in the same commit.
    - The auto-cancellation policy is consulted only after a failed
      settlement.
    - A settlement the ledger confirmed is always a SUCCESS with an audit
      record, even when the obligation row cannot be written.
    - All timestamps come from the injected Clock.

Failure modes:
    - UnauthorizedCallerError before any read when the caller is neither the
      automation identity nor the owner.
    - SigningCredentialMissingError (fatal) from ``ensure_ready()``, before
      any item is touched.
    - ObligationNotFoundError from ``process_one`` for an unknown key.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    LedgerError,
    LedgerSettlementError,
    ObligationNotFoundError,
    SettlementTimeoutError,
    UnauthorizedCallerError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.obligation import ObligationModel

from settlement_batch.domain.policy import (
    AUTO_CANCEL_THRESHOLD,
    advance_next_due,
    cancellation_decision,
    cap_reached,
    is_due,
    terminal_reason,
)
from settlement_batch.domain.types import (
    STORE_ERROR_REASON,
    BatchSettlementResult,
    CancellationReason,
    EmissionContext,
    ExecutorStats,
    ItemOutcome,
    Obligation,
    ObligationKey,
    SettlementAuthorization,
    SettlementItemResult,
    SkipReason,
)
from settlement_batch.services.emitter import SideEffectEmitter
from settlement_batch.services.ledger import SettlementCapability, TimeoutGuard

logger = get_logger("batch.executor")

ZERO_ADDRESS = "0x" + "0" * 40

# Actor recorded on rows when no explicit actor is configured.
AUTOMATION_ACTOR_ID = UUID("00000000-0000-0000-0000-00000000a11e")


class ExecutorState:
    """Identities and counters shared by every executor in one process.

    The orchestrator builds one executor per session, so anything that must
    outlive a single cycle lives here.
    """

    def __init__(self, authorization: SettlementAuthorization):
        self._lock = threading.Lock()
        self._authorization = authorization
        self._batch_seq = 0
        self._total_processed = 0
        self._total_failures = 0

    @property
    def authorization(self) -> SettlementAuthorization:
        with self._lock:
            return self._authorization

    def replace_automation_identity(self, identity: str) -> SettlementAuthorization:
        with self._lock:
            self._authorization = SettlementAuthorization(
                automation_identity=identity,
                owner_identity=self._authorization.owner_identity,
            )
            return self._authorization

    def next_batch_id(self) -> int:
        with self._lock:
            self._batch_seq += 1
            return self._batch_seq

    def record(self, successes: int, failures: int) -> None:
        with self._lock:
            self._total_processed += successes
            self._total_failures += failures

    def snapshot(self) -> ExecutorStats:
        with self._lock:
            return ExecutorStats(
                total_processed=self._total_processed,
                total_batches=self._batch_seq,
                total_failures=self._total_failures,
            )


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, SettlementTimeoutError):
        return f"timeout after {exc.timeout_seconds}s"
    if isinstance(exc, LedgerSettlementError):
        return exc.reason
    message = str(exc)
    return message or type(exc).__name__


class SettlementExecutor:
    """Batch settlement engine with per-item commit isolation.

    Contract:
        - ``process_batch()`` returns one SettlementItemResult per key, in
          input order.
        - ``process_one()`` settles a single key outside any batch.
        - ``update_automation_identity()`` rotates the automation identity
          (owner only).
        - ``stats`` reports the shared in-process counters.

    Non-goals:
        - Does NOT select which obligations are due; the resolver does.
        - Does NOT manage background threads; the scheduler does.
    """

    def __init__(
        self,
        session: Session,
        capability: SettlementCapability,
        clock: Clock | None = None,
        emitter: SideEffectEmitter | None = None,
        authorization: SettlementAuthorization | None = None,
        auto_cancel_threshold: int = AUTO_CANCEL_THRESHOLD,
        settlement_timeout_seconds: float | None = 120,
        actor_id: UUID | None = None,
        state: ExecutorState | None = None,
    ):
        if state is None:
            if authorization is None:
                raise ValueError("authorization or state is required")
            state = ExecutorState(authorization)
        if auto_cancel_threshold <= 0:
            raise ValueError(
                f"auto_cancel_threshold must be positive, got {auto_cancel_threshold}"
            )
        self._session = session
        self._capability = capability
        self._clock = clock or SystemClock()
        self._emitter = emitter
        self._state = state
        self._threshold = auto_cancel_threshold
        self._guard = TimeoutGuard(settlement_timeout_seconds)
        self._actor_id = actor_id or AUTOMATION_ACTOR_ID

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def _authorize(self, caller: str, operation: str) -> None:
        if not self._state.authorization.allows(caller):
            logger.warning(
                "unauthorized_caller_rejected",
                extra={"caller": caller, "operation": operation},
            )
            raise UnauthorizedCallerError(caller, operation)

    def update_automation_identity(self, new_identity: str, caller: str) -> None:
        """Rotate the automation identity.

        Raises:
            UnauthorizedCallerError: If caller is not the owner.
            ValueError: If new_identity is empty or the zero address.
        """
        current = self._state.authorization
        if caller != current.owner_identity:
            logger.warning(
                "unauthorized_caller_rejected",
                extra={"caller": caller, "operation": "update_automation_identity"},
            )
            raise UnauthorizedCallerError(caller, "update_automation_identity")
        if not new_identity or not new_identity.strip() or new_identity.lower() == ZERO_ADDRESS:
            raise ValueError("automation identity cannot be empty")

        self._state.replace_automation_identity(new_identity)
        logger.info(
            "automation_identity_updated",
            extra={
                "old_identity": current.automation_identity,
                "new_identity": new_identity,
            },
        )

    @property
    def stats(self) -> ExecutorStats:
        return self._state.snapshot()

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def process_batch(
        self,
        keys: Sequence[ObligationKey],
        caller: str,
        cycle_id: str | None = None,
    ) -> BatchSettlementResult:
        """Settle every key independently, in the given order.

        Raises:
            UnauthorizedCallerError: Caller not allowed (nothing read).
            SigningCredentialMissingError: Capability cannot sign (nothing
                mutated).
        """
        self._authorize(caller, "process_batch")
        self._capability.ensure_ready()

        batch_id = self._state.next_batch_id()
        started_at = self._clock.now()
        items: list[SettlementItemResult] = []

        with LogContext.bind(batch_id=str(batch_id)):
            logger.info(
                "settlement_batch_started",
                extra={"batch_size": len(keys), "caller": caller},
            )
            for key in keys:
                try:
                    items.append(self._process_key(key, batch_id, cycle_id))
                except Exception as exc:
                    self._session.rollback()
                    logger.exception(
                        "settlement_item_crashed",
                        extra={"obligation_key": str(key)},
                    )
                    items.append(SettlementItemResult(
                        key=key,
                        outcome=ItemOutcome.FAILED,
                        failure_reason=_failure_reason(exc),
                    ))

            result = BatchSettlementResult(
                batch_id=batch_id,
                items=tuple(items),
                started_at=started_at,
                completed_at=self._clock.now(),
            )
            self._state.record(result.success_count, result.failure_count)

            logger.info(
                "settlement_batch_completed",
                extra={
                    "success_count": result.success_count,
                    "failure_count": result.failure_count,
                    "terminal_count": result.terminal_count,
                    "skipped_count": result.skipped_count,
                },
            )
        return result

    def process_one(
        self,
        key: ObligationKey,
        caller: str,
        cycle_id: str | None = None,
    ) -> SettlementItemResult:
        """Settle a single obligation (administrative retry).

        Raises:
            UnauthorizedCallerError: Caller not allowed.
            SigningCredentialMissingError: Capability cannot sign.
            ObligationNotFoundError: No obligation for ``key``.
        """
        self._authorize(caller, "process_one")
        self._capability.ensure_ready()

        result = self._process_key(key, None, cycle_id)
        if result.skip_reason == SkipReason.NOT_FOUND:
            raise ObligationNotFoundError(str(key))

        self._state.record(
            int(result.outcome == ItemOutcome.SUCCESS),
            int(result.outcome == ItemOutcome.FAILED),
        )
        return result

    # -------------------------------------------------------------------------
    # Per item
    # -------------------------------------------------------------------------

    def _lock_obligation(self, key: ObligationKey) -> ObligationModel | None:
        return self._session.execute(
            select(ObligationModel)
            .where(
                ObligationModel.network_id == key.network_id,
                ObligationModel.ledger_id == key.ledger_id,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _terminate(
        self,
        row: ObligationModel,
        reason: CancellationReason,
        now: datetime,
    ) -> None:
        row.is_active = False
        row.cancelled_at = now
        row.cancellation_reason = reason.value
        row.updated_by_id = self._actor_id

    def _process_key(
        self,
        key: ObligationKey,
        batch_id: int | None,
        cycle_id: str | None,
    ) -> SettlementItemResult:
        start = time.monotonic()
        with LogContext.bind(obligation_key=str(key)):
            try:
                row = self._lock_obligation(key)
            except Exception as exc:
                self._session.rollback()
                logger.error(
                    "obligation_read_failed",
                    extra={"error": str(exc)},
                    exc_info=True,
                )
                return SettlementItemResult(
                    key=key,
                    outcome=ItemOutcome.FAILED,
                    failure_reason=STORE_ERROR_REASON,
                    duration_ms=self._elapsed(start),
                )

            if row is None:
                self._session.rollback()
                logger.info("obligation_skipped", extra={"reason": "not_found"})
                return self._skipped(key, SkipReason.NOT_FOUND, start)

            if not row.is_active:
                self._session.rollback()
                logger.info("obligation_skipped", extra={"reason": "inactive"})
                return self._skipped(key, SkipReason.INACTIVE, start)

            now = self._clock.now()
            snapshot = row.to_dto()

            reason = terminal_reason(snapshot, now)
            if reason is not None:
                return self._terminal_transition(
                    row, snapshot, reason, now, start, batch_id, cycle_id,
                )

            if not is_due(snapshot, now):
                self._session.rollback()
                logger.info(
                    "obligation_skipped",
                    extra={"reason": "not_due", "next_due": snapshot.next_due},
                )
                return self._skipped(key, SkipReason.NOT_DUE, start)

            try:
                receipt = self._guard.settle(self._capability, key)
                if not receipt.confirmed:
                    raise LedgerSettlementError(
                        str(key), "transaction reverted", receipt.tx_ref,
                    )
            except Exception as exc:
                return self._record_failure(
                    row, snapshot, exc, start, batch_id, cycle_id,
                )

            return self._record_success(
                row, snapshot, receipt.tx_ref, start, batch_id, cycle_id,
            )

    def _terminal_transition(
        self,
        row: ObligationModel,
        snapshot: Obligation,
        reason: CancellationReason,
        now: datetime,
        start: float,
        batch_id: int | None,
        cycle_id: str | None,
    ) -> SettlementItemResult:
        self._terminate(row, reason, now)
        after = row.to_dto()
        if not self._commit(snapshot.key):
            return self._store_failure(snapshot.key, None, start)

        logger.info(
            "obligation_terminated",
            extra={
                "reason": reason.value,
                "payment_count": after.payment_count,
                "max_payments": after.max_payments,
            },
        )
        result = SettlementItemResult(
            key=snapshot.key,
            outcome=ItemOutcome.TERMINATED,
            cancellation_reason=reason,
            payment_count=after.payment_count,
            failed_payment_count=after.failed_payment_count,
            next_due=after.next_due,
            duration_ms=self._elapsed(start),
        )
        self._emit(result, after, batch_id, cycle_id)
        return result

    def _record_success(
        self,
        row: ObligationModel,
        snapshot: Obligation,
        tx_ref: str | None,
        start: float,
        batch_id: int | None,
        cycle_id: str | None,
    ) -> SettlementItemResult:
        now = self._clock.now()
        row.payment_count = snapshot.payment_count + 1
        row.failed_payment_count = 0
        row.next_due = advance_next_due(snapshot.next_due, snapshot.interval_seconds)
        row.last_settled_at = now
        row.updated_by_id = self._actor_id

        cancellation = None
        if cap_reached(row.payment_count, row.max_payments):
            cancellation = CancellationReason.EXPIRED_MAX_PAYMENTS
            self._terminate(row, cancellation, now)

        after = row.to_dto()
        if not self._commit(snapshot.key):
            return self._unrecorded_success(
                snapshot, tx_ref, start, batch_id, cycle_id,
            )

        logger.info(
            "settlement_succeeded",
            extra={
                "tx_ref": tx_ref,
                "payment_count": after.payment_count,
                "next_due": after.next_due,
            },
        )
        if cancellation is not None:
            logger.info(
                "obligation_terminated",
                extra={
                    "reason": cancellation.value,
                    "payment_count": after.payment_count,
                    "max_payments": after.max_payments,
                },
            )

        result = SettlementItemResult(
            key=snapshot.key,
            outcome=ItemOutcome.SUCCESS,
            tx_ref=tx_ref,
            cancellation_reason=cancellation,
            payment_count=after.payment_count,
            failed_payment_count=after.failed_payment_count,
            next_due=after.next_due,
            duration_ms=self._elapsed(start),
        )
        self._emit(result, after, batch_id, cycle_id)
        return result

    def _unrecorded_success(
        self,
        snapshot: Obligation,
        tx_ref: str | None,
        start: float,
        batch_id: int | None,
        cycle_id: str | None,
    ) -> SettlementItemResult:
        """The ledger settled but the obligation row could not be written.

        The transfer happened, so it is still a SUCCESS with its audit
        record.  The mirror catches up from the indexer's settlement event.
        """
        logger.error(
            "settlement_confirmed_store_write_failed",
            extra={"tx_ref": tx_ref, "payment_count": snapshot.payment_count},
        )
        result = SettlementItemResult(
            key=snapshot.key,
            outcome=ItemOutcome.SUCCESS,
            tx_ref=tx_ref,
            duration_ms=self._elapsed(start),
            store_error=True,
        )
        self._emit(result, snapshot, batch_id, cycle_id)
        return result

    def _record_failure(
        self,
        row: ObligationModel,
        snapshot: Obligation,
        exc: Exception,
        start: float,
        batch_id: int | None,
        cycle_id: str | None,
    ) -> SettlementItemResult:
        now = self._clock.now()
        reason = _failure_reason(exc)
        tx_ref = getattr(exc, "tx_ref", None)

        row.failed_payment_count = snapshot.failed_payment_count + 1
        row.updated_by_id = self._actor_id

        decision = cancellation_decision(row.failed_payment_count, self._threshold)
        if decision.cancel:
            self._terminate(row, decision.reason, now)

        after = row.to_dto()
        if not self._commit(snapshot.key):
            return self._store_failure(snapshot.key, tx_ref, start)

        logger.warning(
            "settlement_failed",
            extra={
                "failure_reason": reason,
                "error_code": getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                "failed_payment_count": after.failed_payment_count,
                "ledger_error": isinstance(exc, LedgerError),
            },
        )
        if decision.cancel:
            logger.warning(
                "obligation_auto_cancelled",
                extra={
                    "reason": decision.reason.value,
                    "failed_payment_count": after.failed_payment_count,
                    "threshold": self._threshold,
                },
            )

        result = SettlementItemResult(
            key=snapshot.key,
            outcome=ItemOutcome.FAILED,
            tx_ref=tx_ref,
            failure_reason=reason,
            cancellation_reason=decision.reason,
            payment_count=after.payment_count,
            failed_payment_count=after.failed_payment_count,
            next_due=after.next_due,
            duration_ms=self._elapsed(start),
        )
        self._emit(result, after, batch_id, cycle_id)
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _commit(self, key: ObligationKey) -> bool:
        try:
            self._session.commit()
            return True
        except Exception:
            self._session.rollback()
            logger.error(
                "obligation_store_write_failed",
                extra={"obligation_key": str(key)},
                exc_info=True,
            )
            return False

    def _store_failure(
        self, key: ObligationKey, tx_ref: str | None, start: float,
    ) -> SettlementItemResult:
        return SettlementItemResult(
            key=key,
            outcome=ItemOutcome.FAILED,
            tx_ref=tx_ref,
            failure_reason=STORE_ERROR_REASON,
            duration_ms=self._elapsed(start),
        )

    def _skipped(
        self, key: ObligationKey, reason: SkipReason, start: float,
    ) -> SettlementItemResult:
        return SettlementItemResult(
            key=key,
            outcome=ItemOutcome.SKIPPED,
            skip_reason=reason,
            duration_ms=self._elapsed(start),
        )

    def _emit(
        self,
        result: SettlementItemResult,
        obligation: Obligation,
        batch_id: int | None,
        cycle_id: str | None,
    ) -> None:
        if self._emitter is None:
            return
        self._emitter.emit(
            result,
            obligation,
            EmissionContext(
                actor_id=self._actor_id,
                batch_id=batch_id,
                cycle_id=cycle_id,
            ),
        )

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
