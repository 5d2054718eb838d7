"""
ORM model for notification intents.

Contract:
    NotificationModel records that a party should be told about a settlement
    outcome.  Delivery (in-app, email) happens outside this engine; only
    ``is_read`` is mutated afterwards.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.dtos import (
    NotificationIntent,
    NotificationType,
    ObligationKey,
)

__all__ = ["NotificationModel", "NotificationType"]


class NotificationModel(TrackedBase):
    """Notification intent for one recipient."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )

    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    network_id: Mapped[int] = mapped_column(nullable=False)
    ledger_id: Mapped[int] = mapped_column(nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dto(self) -> NotificationIntent:
        return NotificationIntent(
            recipient_id=self.recipient_id,
            notification_type=NotificationType(self.notification_type),
            title=self.title,
            message=self.message,
            key=ObligationKey(network_id=self.network_id, ledger_id=self.ledger_id),
        )

    @classmethod
    def from_dto(cls, dto: NotificationIntent, created_by_id: UUID) -> NotificationModel:
        return cls(
            recipient_id=dto.recipient_id,
            notification_type=dto.notification_type.value,
            title=dto.title,
            message=dto.message,
            network_id=dto.key.network_id,
            ledger_id=dto.key.ledger_id,
            is_read=False,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
