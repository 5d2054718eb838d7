"""
ORM-Level Immutability Enforcement for settlement records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, we raise ImmutabilityViolationError and the flush is
aborted. The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | Rule
-------------------|-----------------------------------------------------------
SettlementAttempt  | ALWAYS immutable from creation; never deleted
Obligation         | network_id / ledger_id never change
                   | is_active never goes False -> True
                   | payment_count never decreases
                   | never deleted once a payment has been recorded

Obligation counters and schedule fields are otherwise mutable: the executor
advances them on every settlement.

===============================================================================
USAGE
===============================================================================

    from settlement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that must bypass the rules call ``unregister_immutability_listeners()``
and re-register afterwards.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

OBLIGATION_IDENTITY_FIELDS = frozenset({"network_id", "ledger_id"})


def _block(entity_type: str, entity_id: str, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


# =============================================================================
# SettlementAttempt: append-only
# =============================================================================


def _check_settlement_attempt_immutability(mapper, connection, target):
    """Prevent any updates to SettlementAttempt records."""
    from settlement_kernel.models.settlement_attempt import SettlementAttemptModel

    if not isinstance(target, SettlementAttemptModel):
        return

    insp = inspect(target)
    changed = [
        attr.key for attr in insp.attrs
        if attr.key not in ("updated_at", "updated_by_id")
        and attr.history.has_changes()
    ]
    if not changed:
        return

    _block(
        "SettlementAttempt",
        str(target.id),
        "UPDATE",
        "Settlement attempts are immutable and cannot be modified",
        field=changed[0],
    )


def _check_settlement_attempt_delete(mapper, connection, target):
    """Prevent deletion of SettlementAttempt records."""
    from settlement_kernel.models.settlement_attempt import SettlementAttemptModel

    if not isinstance(target, SettlementAttemptModel):
        return

    _block(
        "SettlementAttempt",
        str(target.id),
        "DELETE",
        "Settlement attempts cannot be deleted",
    )


# =============================================================================
# Obligation: identity and monotonic counters
# =============================================================================


def _check_obligation_immutability(mapper, connection, target):
    """
    Guard the Obligation fields that may only move one way.

    Logic:
        1. Identity fields (network_id, ledger_id) never change.
        2. is_active may go True -> False, never False -> True.
        3. payment_count may only grow.
    """
    from settlement_kernel.models.obligation import ObligationModel

    if not isinstance(target, ObligationModel):
        return

    entity_id = str(target.id)

    for field in sorted(OBLIGATION_IDENTITY_FIELDS):
        if get_history(target, field).deleted:
            _block(
                "Obligation",
                entity_id,
                "UPDATE",
                f"Cannot modify identity field '{field}'",
                field=field,
            )

    active_history = get_history(target, "is_active")
    if active_history.deleted and active_history.added:
        if active_history.deleted[0] is False and active_history.added[0]:
            _block(
                "Obligation",
                entity_id,
                "UPDATE",
                "Inactive obligations cannot be reactivated",
                field="is_active",
            )

    count_history = get_history(target, "payment_count")
    if count_history.deleted and count_history.added:
        old, new = count_history.deleted[0], count_history.added[0]
        if old is not None and new is not None and new < old:
            _block(
                "Obligation",
                entity_id,
                "UPDATE",
                f"payment_count cannot decrease ({old} -> {new})",
                field="payment_count",
            )


def _check_obligation_delete(mapper, connection, target):
    """Obligations with recorded payments cannot be deleted."""
    from settlement_kernel.models.obligation import ObligationModel

    if not isinstance(target, ObligationModel):
        return

    if (target.payment_count or 0) > 0:
        _block(
            "Obligation",
            str(target.id),
            "DELETE",
            "Obligations with recorded payments cannot be deleted",
        )


# =============================================================================
# Registration
# =============================================================================

_LISTENERS = (
    ("SettlementAttemptModel", "before_update", _check_settlement_attempt_immutability),
    ("SettlementAttemptModel", "before_delete", _check_settlement_attempt_delete),
    ("ObligationModel", "before_update", _check_obligation_immutability),
    ("ObligationModel", "before_delete", _check_obligation_delete),
)


def _targets() -> dict:
    from settlement_kernel.models.obligation import ObligationModel
    from settlement_kernel.models.settlement_attempt import SettlementAttemptModel

    return {
        "ObligationModel": ObligationModel,
        "SettlementAttemptModel": SettlementAttemptModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already registered listeners are skipped.
    """
    targets = _targets()
    for name, event_name, fn in _LISTENERS:
        if not event.contains(targets[name], event_name, fn):
            event.listen(targets[name], event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    targets = _targets()
    for name, event_name, fn in _LISTENERS:
        if event.contains(targets[name], event_name, fn):
            event.remove(targets[name], event_name, fn)
