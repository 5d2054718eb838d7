"""
SideEffectEmitter -- audit records and notification intents per outcome.

Contract:
    ``emit()`` persists exactly one SettlementAttempt per non-skipped item
    outcome plus that outcome's notification intents, in its own session and
    transaction, then hands the intents to optional delivery sinks.

Architecture: settlement_batch/services.  Imports from settlement_batch.domain
    and kernel models.

Invariants enforced:
    - Runs only after the item's obligation mutation has been committed.
    - Never raises: any failure is logged as ``side_effect_emission_failed``
      and reported by returning False.  A committed settlement is never
      undone by an emission problem.

Notification intents per outcome:
    SUCCESS     payer PAYMENT_SUCCESS, payee PAYMENT_RECEIVED
    FAILED      payer PAYMENT_FAILED
    cancelled   payer and payee OBLIGATION_CANCELLED (in addition to the above)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session, sessionmaker

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.notification import NotificationModel
from settlement_kernel.models.settlement_attempt import SettlementAttemptModel

from settlement_batch.domain.types import (
    FAILED_TX_REF,
    AttemptOutcome,
    CancellationReason,
    EmissionContext,
    ItemOutcome,
    NotificationIntent,
    NotificationType,
    Obligation,
    SettlementAttempt,
    SettlementItemResult,
)

logger = get_logger("batch.emitter")

NotificationSink = Callable[[NotificationIntent], None]

_CURRENCY_DECIMALS = {"USDC": 6, "USDT": 6, "ETH": 18}

_CANCELLATION_TEXT = {
    CancellationReason.EXPIRED_MAX_PAYMENTS: "all scheduled payments have been made",
    CancellationReason.EXPIRED_END_DATE: "its end date has passed",
    CancellationReason.AUTO_CANCELLED_FAILURES: "payments failed repeatedly",
}

_ATTEMPT_OUTCOME = {
    ItemOutcome.SUCCESS: AttemptOutcome.SUCCESS,
    ItemOutcome.FAILED: AttemptOutcome.FAILED,
    ItemOutcome.TERMINATED: AttemptOutcome.CANCELLED,
}


def format_amount(amount: int, currency: str) -> str:
    """Render a smallest-unit integer amount for humans."""
    decimals = _CURRENCY_DECIMALS.get(currency.upper(), 0)
    value = Decimal(amount).scaleb(-decimals) if decimals else Decimal(amount)
    return f"{value.normalize():f} {currency}"


def build_attempt(
    result: SettlementItemResult,
    obligation: Obligation,
    context: EmissionContext,
    attempted_at: datetime,
) -> SettlementAttempt | None:
    """The audit record for ``result``; None for skipped items."""
    outcome = _ATTEMPT_OUTCOME.get(result.outcome)
    if outcome is None:
        return None
    return SettlementAttempt(
        key=obligation.key,
        amount=obligation.amount,
        fee_amount=obligation.fee_amount,
        outcome=outcome,
        tx_ref=result.tx_ref or FAILED_TX_REF,
        payer_address=obligation.payer_address,
        payee_address=obligation.payee_address,
        attempted_at=attempted_at,
        failure_reason=result.failure_reason,
        cancellation_reason=result.cancellation_reason,
        batch_id=context.batch_id,
        cycle_id=context.cycle_id,
    )


def build_notifications(
    result: SettlementItemResult,
    obligation: Obligation,
) -> tuple[NotificationIntent, ...]:
    service = obligation.service_name or f"obligation {obligation.key}"
    amount = format_amount(obligation.amount, obligation.currency)
    intents: list[NotificationIntent] = []

    if result.outcome == ItemOutcome.SUCCESS:
        intents.append(NotificationIntent(
            recipient_id=obligation.payer_id,
            notification_type=NotificationType.PAYMENT_SUCCESS,
            title="Payment Successful",
            message=f"Your payment of {amount} for {service} was processed.",
            key=obligation.key,
        ))
        intents.append(NotificationIntent(
            recipient_id=obligation.payee_id,
            notification_type=NotificationType.PAYMENT_RECEIVED,
            title="Payment Received",
            message=f"You received {amount} for {service}.",
            key=obligation.key,
        ))
    elif result.outcome == ItemOutcome.FAILED:
        reason = result.failure_reason or "unknown error"
        intents.append(NotificationIntent(
            recipient_id=obligation.payer_id,
            notification_type=NotificationType.PAYMENT_FAILED,
            title="Payment Failed",
            message=(
                f"Your payment of {amount} for {service} failed: {reason}. "
                f"Failed attempts: {result.failed_payment_count}."
            ),
            key=obligation.key,
        ))

    if result.cancellation_reason is not None:
        why = _CANCELLATION_TEXT[result.cancellation_reason]
        for recipient in (obligation.payer_id, obligation.payee_id):
            intents.append(NotificationIntent(
                recipient_id=recipient,
                notification_type=NotificationType.OBLIGATION_CANCELLED,
                title="Subscription Cancelled",
                message=f"{service} was cancelled because {why}.",
                key=obligation.key,
            ))

    return tuple(intents)


class SideEffectEmitter:
    """Writes audit and notification records for settlement outcomes.

    Non-goals:
        - Does NOT deliver notifications; sinks do.
        - Does NOT share the executor's session.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        sinks: Sequence[NotificationSink] = (),
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._sinks = tuple(sinks)

    def emit(
        self,
        result: SettlementItemResult,
        obligation: Obligation,
        context: EmissionContext,
    ) -> bool:
        """Persist and fan out the side effects of one outcome.

        Returns:
            True if everything was recorded and delivered, False otherwise.
        """
        try:
            attempt = build_attempt(
                result, obligation, context, self._clock.now(),
            )
            if attempt is None:
                return True
            intents = build_notifications(result, obligation)

            session = self._session_factory()
            try:
                session.add(SettlementAttemptModel.from_dto(
                    attempt, created_by_id=context.actor_id,
                ))
                for intent in intents:
                    session.add(NotificationModel.from_dto(
                        intent, created_by_id=context.actor_id,
                    ))
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

            for intent in intents:
                for sink in self._sinks:
                    sink(intent)

            logger.debug(
                "side_effects_emitted",
                extra={
                    "obligation_key": str(obligation.key),
                    "outcome": attempt.outcome.value,
                    "notifications": len(intents),
                },
            )
            return True
        except Exception:
            logger.exception(
                "side_effect_emission_failed",
                extra={
                    "obligation_key": str(obligation.key),
                    "outcome": result.outcome.value,
                },
            )
            return False
