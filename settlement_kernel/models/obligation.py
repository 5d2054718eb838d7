"""
ORM model for the Obligation Store.

Contract:
    ObligationModel mirrors one recurring obligation registered on the
    settlement ledger.  ``to_dto()`` / ``from_dto()`` round-trip with the
    frozen ``Obligation`` DTO.

Architecture: settlement_kernel/models.  Imports from settlement_kernel.db
    and settlement_kernel.domain only.

Invariants enforced:
    - (network_id, ledger_id) is UNIQUE and never changes after insert.
    - payment_count never decreases; is_active never returns to True
      (see db/immutability.py).
    - Composite index (is_active, next_due) serves the eligibility predicate.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TokenAmount, TrackedBase
from settlement_kernel.domain.clock import ensure_utc
from settlement_kernel.domain.dtos import CancellationReason, Obligation, ObligationKey


def _utc_or_none(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


class ObligationModel(TrackedBase):
    """Mirrored recurring obligation with its settlement counters."""

    __tablename__ = "obligations"

    __table_args__ = (
        UniqueConstraint("network_id", "ledger_id", name="uq_obligations_identity"),
        Index("ix_obligations_active_next_due", "is_active", "next_due"),
        Index("ix_obligations_payer", "payer_id"),
        Index("ix_obligations_payee", "payee_id"),
    )

    network_id: Mapped[int] = mapped_column(nullable=False)
    ledger_id: Mapped[int] = mapped_column(nullable=False)

    payer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payee_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payer_address: Mapped[str] = mapped_column(String(100), nullable=False)
    payee_address: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[int] = mapped_column(TokenAmount(), nullable=False)
    interval_seconds: Mapped[int] = mapped_column(nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    max_payments: Mapped[int | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(20), nullable=False, default="USDC")
    service_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    fee_amount: Mapped[int] = mapped_column(TokenAmount(), nullable=False, default=0)
    fee_recipient: Mapped[str | None] = mapped_column(String(100), nullable=True)
    fee_currency: Mapped[str | None] = mapped_column(String(20), nullable=True)

    payment_count: Mapped[int] = mapped_column(nullable=False, default=0)
    failed_payment_count: Mapped[int] = mapped_column(nullable=False, default=0)
    next_due: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    @property
    def key(self) -> ObligationKey:
        return ObligationKey(network_id=self.network_id, ledger_id=self.ledger_id)

    def to_dto(self) -> Obligation:
        return Obligation(
            key=self.key,
            payer_id=self.payer_id,
            payee_id=self.payee_id,
            payer_address=self.payer_address,
            payee_address=self.payee_address,
            amount=self.amount,
            interval_seconds=self.interval_seconds,
            next_due=ensure_utc(self.next_due),
            currency=self.currency,
            service_name=self.service_name,
            end_date=_utc_or_none(self.end_date),
            max_payments=self.max_payments,
            fee_amount=self.fee_amount,
            fee_recipient=self.fee_recipient,
            fee_currency=self.fee_currency,
            payment_count=self.payment_count,
            failed_payment_count=self.failed_payment_count,
            is_active=self.is_active,
            cancelled_at=_utc_or_none(self.cancelled_at),
            cancellation_reason=(
                CancellationReason(self.cancellation_reason)
                if self.cancellation_reason
                else None
            ),
            last_settled_at=_utc_or_none(self.last_settled_at),
            last_synced_at=_utc_or_none(self.last_synced_at),
            obligation_id=self.id,
        )

    @classmethod
    def from_dto(cls, dto: Obligation, created_by_id: UUID) -> ObligationModel:
        kwargs = {}
        if dto.obligation_id is not None:
            kwargs["id"] = dto.obligation_id
        return cls(
            network_id=dto.key.network_id,
            ledger_id=dto.key.ledger_id,
            payer_id=dto.payer_id,
            payee_id=dto.payee_id,
            payer_address=dto.payer_address,
            payee_address=dto.payee_address,
            amount=dto.amount,
            interval_seconds=dto.interval_seconds,
            end_date=dto.end_date,
            max_payments=dto.max_payments,
            currency=dto.currency,
            service_name=dto.service_name,
            fee_amount=dto.fee_amount,
            fee_recipient=dto.fee_recipient,
            fee_currency=dto.fee_currency,
            payment_count=dto.payment_count,
            failed_payment_count=dto.failed_payment_count,
            next_due=dto.next_due,
            is_active=dto.is_active,
            cancelled_at=dto.cancelled_at,
            cancellation_reason=(
                dto.cancellation_reason.value if dto.cancellation_reason else None
            ),
            last_settled_at=dto.last_settled_at,
            last_synced_at=dto.last_synced_at,
            created_by_id=created_by_id,
            updated_by_id=None,
            **kwargs,
        )

    def __repr__(self) -> str:
        return (
            f"<ObligationModel {self.network_id}:{self.ledger_id} "
            f"active={self.is_active} next_due={self.next_due}>"
        )
