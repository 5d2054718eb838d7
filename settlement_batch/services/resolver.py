"""
EligibilityResolver -- which obligations are due for settlement.

Contract:
    Read-only queries over the Obligation Store using one predicate:
    ``is_active AND next_due <= now + lookahead``.

Architecture: settlement_batch/services.  Imports from settlement_batch.domain
    and kernel models.

Invariants enforced:
    - Pure read: never flushes, never mutates a row.
    - Ordering is ``next_due ASC`` with ``(network_id, ledger_id)`` as the
      tie-breaker, so repeated calls over the same state return the same list.
    - The bounded query never returns more than ``max_batch_size`` keys;
      the rest wait for the next cycle.

Failure modes:
    - ValueError on a negative lookahead or a non-positive max_batch_size.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import ensure_utc
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.obligation import ObligationModel

from settlement_batch.domain.types import Obligation, ObligationKey, ResolverCheck

logger = get_logger("batch.resolver")


def _validate(lookahead: timedelta, max_batch_size: int | None = None) -> None:
    if lookahead < timedelta(0):
        raise ValueError(f"lookahead must be >= 0, got {lookahead}")
    if max_batch_size is not None and max_batch_size <= 0:
        raise ValueError(f"max_batch_size must be > 0, got {max_batch_size}")


class EligibilityResolver:
    """Selects due obligations in earliest-due-first order.

    Non-goals:
        - Does NOT re-validate terminal conditions (cap, end date); the
          executor does that under a row lock.
    """

    def __init__(self, session: Session):
        self._session = session

    def _due_predicate(self, now: datetime, lookahead: timedelta):
        horizon = ensure_utc(now) + lookahead
        return (
            ObligationModel.is_active.is_(True),
            ObligationModel.next_due <= horizon,
        )

    def _ordered(self, now: datetime, lookahead: timedelta):
        return (
            select(ObligationModel)
            .where(*self._due_predicate(now, lookahead))
            .order_by(
                ObligationModel.next_due.asc(),
                ObligationModel.network_id.asc(),
                ObligationModel.ledger_id.asc(),
            )
        )

    def due_obligations(
        self,
        now: datetime,
        lookahead: timedelta,
        max_batch_size: int,
    ) -> tuple[ObligationKey, ...]:
        """Bounded, ordered list of keys due within ``now + lookahead``."""
        _validate(lookahead, max_batch_size)
        rows = self._session.execute(
            self._ordered(now, lookahead).limit(max_batch_size)
        ).scalars().all()
        keys = tuple(row.key for row in rows)
        logger.debug(
            "due_obligations_resolved",
            extra={
                "count": len(keys),
                "max_batch_size": max_batch_size,
                "lookahead_seconds": lookahead.total_seconds(),
            },
        )
        return keys

    def count_due(self, now: datetime, lookahead: timedelta = timedelta(0)) -> int:
        _validate(lookahead)
        return self._session.execute(
            select(func.count())
            .select_from(ObligationModel)
            .where(*self._due_predicate(now, lookahead))
        ).scalar_one()

    def list_due(
        self, now: datetime, lookahead: timedelta = timedelta(0),
    ) -> tuple[ObligationKey, ...]:
        """Same predicate and order as ``due_obligations``, without the cap."""
        _validate(lookahead)
        rows = self._session.execute(self._ordered(now, lookahead)).scalars().all()
        return tuple(row.key for row in rows)

    def summaries(
        self, now: datetime, lookahead: timedelta = timedelta(0),
    ) -> tuple[Obligation, ...]:
        _validate(lookahead)
        rows = self._session.execute(self._ordered(now, lookahead)).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def checker(
        self,
        now: datetime,
        lookahead: timedelta,
        max_batch_size: int,
    ) -> ResolverCheck:
        """Whether a batch is worth running, with the keys to hand over."""
        keys = self.due_obligations(now, lookahead, max_batch_size)
        return ResolverCheck(can_exec=bool(keys), keys=keys)
