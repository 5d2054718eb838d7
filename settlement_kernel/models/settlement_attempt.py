"""
ORM model for settlement attempt audit records.

Contract:
    One SettlementAttemptModel row per settlement outcome: a successful or
    failed ledger call, or a terminal transition (CANCELLED).  Rows are
    append-only; db/immutability.py blocks UPDATE and DELETE.

Architecture: settlement_kernel/models.  Imports from settlement_kernel.db
    and settlement_kernel.domain only.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TokenAmount, TrackedBase
from settlement_kernel.domain.clock import ensure_utc
from settlement_kernel.domain.dtos import (
    FAILED_TX_REF,
    AttemptOutcome,
    CancellationReason,
    ObligationKey,
    SettlementAttempt,
)

__all__ = ["FAILED_TX_REF", "AttemptOutcome", "SettlementAttemptModel"]


class SettlementAttemptModel(TrackedBase):
    """Immutable record of one settlement outcome."""

    __tablename__ = "settlement_attempts"

    __table_args__ = (
        Index("ix_settlement_attempts_obligation", "network_id", "ledger_id"),
        Index("ix_settlement_attempts_attempted_at", "attempted_at"),
        Index("ix_settlement_attempts_outcome", "outcome"),
    )

    network_id: Mapped[int] = mapped_column(nullable=False)
    ledger_id: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[int] = mapped_column(TokenAmount(), nullable=False)
    fee_amount: Mapped[int] = mapped_column(TokenAmount(), nullable=False, default=0)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    tx_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payer_address: Mapped[str] = mapped_column(String(100), nullable=False)
    payee_address: Mapped[str] = mapped_column(String(100), nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    batch_id: Mapped[int | None] = mapped_column(nullable=True)
    cycle_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def key(self) -> ObligationKey:
        return ObligationKey(network_id=self.network_id, ledger_id=self.ledger_id)

    def to_dto(self) -> SettlementAttempt:
        return SettlementAttempt(
            key=self.key,
            amount=self.amount,
            fee_amount=self.fee_amount,
            outcome=AttemptOutcome(self.outcome),
            tx_ref=self.tx_ref,
            payer_address=self.payer_address,
            payee_address=self.payee_address,
            attempted_at=ensure_utc(self.attempted_at),
            failure_reason=self.failure_reason,
            cancellation_reason=(
                CancellationReason(self.cancellation_reason)
                if self.cancellation_reason
                else None
            ),
            batch_id=self.batch_id,
            cycle_id=self.cycle_id,
            attempt_id=self.id,
        )

    @classmethod
    def from_dto(cls, dto: SettlementAttempt, created_by_id: UUID) -> SettlementAttemptModel:
        kwargs = {}
        if dto.attempt_id is not None:
            kwargs["id"] = dto.attempt_id
        return cls(
            network_id=dto.key.network_id,
            ledger_id=dto.key.ledger_id,
            amount=dto.amount,
            fee_amount=dto.fee_amount,
            outcome=dto.outcome.value,
            tx_ref=dto.tx_ref,
            failure_reason=dto.failure_reason,
            cancellation_reason=(
                dto.cancellation_reason.value if dto.cancellation_reason else None
            ),
            payer_address=dto.payer_address,
            payee_address=dto.payee_address,
            attempted_at=dto.attempted_at,
            batch_id=dto.batch_id,
            cycle_id=dto.cycle_id,
            created_by_id=created_by_id,
            updated_by_id=None,
            **kwargs,
        )
