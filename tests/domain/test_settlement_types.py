"""Tests for settlement DTOs and the obligation key."""

from dataclasses import FrozenInstanceError
from datetime import timedelta

import pytest

from settlement_batch.domain.types import (
    BatchSettlementResult,
    CancellationReason,
    ItemOutcome,
    ObligationKey,
    SettlementAuthorization,
    SettlementItemResult,
    SkipReason,
)
from tests.conftest import AUTOMATION, OWNER, STRANGER, T0, make_obligation


class TestObligationKey:

    def test_string_form(self):
        assert str(ObligationKey(8453, 17)) == "8453:17"

    def test_parse(self):
        assert ObligationKey.parse(" 8453:17 ") == ObligationKey(8453, 17)

    @pytest.mark.parametrize("value", ["8453", "8453-17", "a:b", "8453:", ":17"])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            ObligationKey.parse(value)

    def test_ordered_and_hashable(self):
        keys = {ObligationKey(2, 1), ObligationKey(1, 5), ObligationKey(1, 2)}
        assert sorted(keys) == [ObligationKey(1, 2), ObligationKey(1, 5), ObligationKey(2, 1)]

    def test_frozen(self):
        key = ObligationKey(1, 1)
        with pytest.raises(FrozenInstanceError):
            key.ledger_id = 2


class TestObligation:

    def test_defaults(self):
        ob = make_obligation(1)
        assert ob.is_active is True
        assert ob.payment_count == 0
        assert ob.failed_payment_count == 0
        assert ob.currency == "USDC"

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            make_obligation(1, interval_seconds=0)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            make_obligation(1, amount=-1)

    def test_negative_counter_rejected(self):
        with pytest.raises(ValueError):
            make_obligation(1, failed_payment_count=-1)

    def test_zero_max_payments_rejected(self):
        with pytest.raises(ValueError):
            make_obligation(1, max_payments=0)


class TestSettlementAuthorization:

    def test_allows_automation_and_owner(self):
        auth = SettlementAuthorization(automation_identity=AUTOMATION, owner_identity=OWNER)
        assert auth.allows(AUTOMATION)
        assert auth.allows(OWNER)
        assert not auth.allows(STRANGER)


class TestBatchSettlementResult:

    def _item(self, ledger_id, outcome, **kw):
        return SettlementItemResult(key=ObligationKey(8453, ledger_id), outcome=outcome, **kw)

    def test_counts_derived_from_items(self):
        result = BatchSettlementResult(
            batch_id=1,
            items=(
                self._item(1, ItemOutcome.SUCCESS),
                self._item(2, ItemOutcome.SUCCESS),
                self._item(3, ItemOutcome.FAILED),
                self._item(4, ItemOutcome.TERMINATED),
                self._item(5, ItemOutcome.SKIPPED, skip_reason=SkipReason.INACTIVE),
            ),
            started_at=T0,
            completed_at=T0 + timedelta(seconds=3),
        )
        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.terminal_count == 1
        assert result.skipped_count == 1
        assert result.counts == (2, 1)

    def test_empty_batch(self):
        result = BatchSettlementResult(batch_id=7)
        assert result.counts == (0, 0)

    def test_cancelled_flag(self):
        item = self._item(
            1, ItemOutcome.FAILED,
            cancellation_reason=CancellationReason.AUTO_CANCELLED_FAILURES,
        )
        assert item.cancelled
        assert not self._item(2, ItemOutcome.FAILED).cancelled
