"""
AutomationControl -- administrative surface over one scheduler.

Contract:
    Each method returns a JSON-ready response dict shaped like the thin
    HTTP layer that fronts it: ``{"success": True, "data": ...}`` or
    ``{"success": False, "error": ...}``.  Per-settlement results are never
    reported here; ``trigger()`` only says whether a cycle ran.

Architecture: settlement_batch/services.  Wraps SettlementScheduler.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from settlement_kernel.exceptions import SettlementKernelError
from settlement_kernel.logging_config import get_logger

from settlement_batch.domain.types import Obligation
from settlement_batch.services.scheduler import SettlementScheduler

logger = get_logger("batch.control")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def obligation_summary(obligation: Obligation) -> dict[str, Any]:
    return {
        "key": str(obligation.key),
        "networkId": obligation.key.network_id,
        "ledgerId": obligation.key.ledger_id,
        "payer": obligation.payer_address,
        "payee": obligation.payee_address,
        "amount": str(obligation.amount),
        "currency": obligation.currency,
        "serviceName": obligation.service_name,
        "nextDue": _iso(obligation.next_due),
        "paymentCount": obligation.payment_count,
        "failedPaymentCount": obligation.failed_payment_count,
        "maxPayments": obligation.max_payments,
        "endDate": _iso(obligation.end_date),
    }


def _error(exc: Exception) -> dict[str, Any]:
    code = exc.code if isinstance(exc, SettlementKernelError) else "INTERNAL_ERROR"
    return {"success": False, "error": str(exc), "code": code}


class AutomationControl:
    def __init__(self, scheduler: SettlementScheduler):
        self._scheduler = scheduler

    def start(self) -> dict[str, Any]:
        started = self._scheduler.start()
        return {
            "success": True,
            "message": "Automation started" if started else "Automation already running",
        }

    def stop(self) -> dict[str, Any]:
        stopped = self._scheduler.stop()
        return {
            "success": True,
            "message": "Automation stopped" if stopped else "Automation already stopped",
        }

    def status(self) -> dict[str, Any]:
        try:
            status = self._scheduler.status()
        except Exception as exc:
            logger.exception("automation_status_failed")
            return _error(exc)
        return {
            "success": True,
            "data": {
                "running": status.running,
                "dueCount": status.due_count,
                "lastChecked": _iso(status.last_checked),
            },
        }

    def due_obligations(self) -> dict[str, Any]:
        try:
            obligations = self._scheduler.due_obligations()
        except Exception as exc:
            logger.exception("due_obligations_query_failed")
            return _error(exc)
        return {
            "success": True,
            "data": [obligation_summary(o) for o in obligations],
            "count": len(obligations),
        }

    def trigger(self) -> dict[str, Any]:
        result = self._scheduler.trigger_now()
        if not result.accepted:
            return {
                "success": False,
                "data": {"accepted": False},
                "error": "A settlement cycle is already running",
            }
        return {
            "success": True,
            "data": {"accepted": True, "cycleId": result.cycle.cycle_id},
            "message": "Settlement cycle completed",
        }
