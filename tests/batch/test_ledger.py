"""
Tests for the settlement capability wrappers.

Covers:
- TimeoutGuard budget handling
- CredentialCheckedCapability precondition
- build_capability factory resolution
"""

import threading
import time

import pytest

from settlement_batch.domain.types import ObligationKey, SettlementReceipt
from settlement_batch.services.ledger import (
    CredentialCheckedCapability,
    SettlementCapability,
    TimeoutGuard,
    build_capability,
)
from settlement_kernel.exceptions import (
    ConfigurationError,
    LedgerSettlementError,
    SettlementTimeoutError,
    SigningCredentialMissingError,
)
from tests.conftest import FakeSettlementCapability

KEY = ObligationKey(8453, 1)


# =============================================================================
# TimeoutGuard
# =============================================================================


class TestTimeoutGuard:

    def test_returns_receipt_within_budget(self, capability):
        receipt = TimeoutGuard(5).settle(capability, KEY)
        assert receipt.confirmed
        assert capability.calls == [KEY]

    def test_no_budget_calls_directly(self, capability):
        assert TimeoutGuard(None).settle(capability, KEY).tx_ref.startswith("0xtx")

    def test_timeout_raises(self, capability, captured_logs):
        capability.block = threading.Event()
        try:
            start = time.monotonic()
            with pytest.raises(SettlementTimeoutError) as exc_info:
                TimeoutGuard(0.2).settle(capability, KEY)
            assert time.monotonic() - start < 5
        finally:
            capability.block.set()

        assert exc_info.value.timeout_seconds == 0.2
        assert any(r["message"] == "settlement_call_timed_out" for r in captured_logs())

    def test_capability_error_propagates(self, capability):
        capability.script[KEY] = "declined"
        with pytest.raises(LedgerSettlementError):
            TimeoutGuard(5).settle(capability, KEY)

    @pytest.mark.parametrize("budget", [0, -1])
    def test_invalid_budget(self, budget):
        with pytest.raises(ValueError):
            TimeoutGuard(budget)


# =============================================================================
# CredentialCheckedCapability
# =============================================================================


class TestCredentialCheckedCapability:

    def test_missing_key_is_fatal(self, capability):
        checked = CredentialCheckedCapability(capability, None, "PROCESSOR_PRIVATE_KEY")
        with pytest.raises(SigningCredentialMissingError) as exc_info:
            checked.ensure_ready()
        assert exc_info.value.env_var == "PROCESSOR_PRIVATE_KEY"

    def test_present_key_delegates(self, capability):
        checked = CredentialCheckedCapability(capability, "secret", "PROCESSOR_PRIVATE_KEY")
        checked.ensure_ready()
        assert checked.settle(KEY).confirmed
        assert capability.calls == [KEY]

    def test_inner_readiness_still_checked(self):
        inner = FakeSettlementCapability(ready=False)
        checked = CredentialCheckedCapability(inner, "secret", "PROCESSOR_PRIVATE_KEY")
        with pytest.raises(SigningCredentialMissingError):
            checked.ensure_ready()

    def test_satisfies_protocol(self, capability):
        checked = CredentialCheckedCapability(capability, "secret", "X")
        assert isinstance(checked, SettlementCapability)


# =============================================================================
# build_capability
# =============================================================================


class TestBuildCapability:

    def test_resolves_factory(self):
        capability = build_capability("tests.conftest:FakeSettlementCapability")
        assert isinstance(capability, SettlementCapability)
        assert isinstance(capability.settle(KEY), SettlementReceipt)

    def test_kwargs_forwarded(self):
        capability = build_capability("tests.conftest:FakeSettlementCapability", ready=False)
        with pytest.raises(SigningCredentialMissingError):
            capability.ensure_ready()

    @pytest.mark.parametrize(
        "path",
        [
            "no_colon_here",
            "settlement_batch_missing_module:factory",
            "json:no_such_attr",
            "json:",
        ],
    )
    def test_bad_path(self, path):
        with pytest.raises(ConfigurationError):
            build_capability(path)

    def test_non_capability_result(self):
        with pytest.raises(ConfigurationError):
            build_capability("builtins:dict")
