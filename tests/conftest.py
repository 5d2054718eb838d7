"""
Pytest fixtures for the settlement automation test suite.

Provides:
- In-memory SQLite Obligation Store shared across threads (StaticPool)
- Deterministic clock
- Scripted fake settlement capability
- Obligation factory helpers
- Structured log capture

SQLite strips tzinfo from timezone-aware columns, so tests use naive
datetimes throughout; the kernel treats naive values as UTC.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import settlement_kernel.models  # noqa: F401  (registers tables)
from settlement_kernel.db.base import Base
from settlement_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from settlement_kernel.domain.clock import DeterministicClock
from settlement_kernel.domain.dtos import Obligation, ObligationKey
from settlement_kernel.exceptions import (
    LedgerSettlementError,
    SigningCredentialMissingError,
)
from settlement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settlement_kernel.models.obligation import ObligationModel

from settlement_batch.domain.types import SettlementAuthorization, SettlementReceipt

# Test actor ID for all rows created by fixtures
TEST_ACTOR_ID = uuid4()

AUTOMATION = "0x1111111111111111111111111111111111111111"
OWNER = "0x2222222222222222222222222222222222222222"
STRANGER = "0x3333333333333333333333333333333333333333"

NETWORK_ID = 8453

T0 = datetime(2026, 2, 1, 12, 0, 0)
MONTH = 30 * 24 * 60 * 60


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settlement_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, executor):
            executor.process_batch(keys, AUTOMATION)
            logs = captured_logs()
            assert any(r["message"] == "settlement_succeeded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settlement_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine; one connection shared by every thread."""
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture(autouse=True)
def _immutability_listeners():
    register_immutability_listeners()
    yield
    register_immutability_listeners()


@pytest.fixture
def without_immutability():
    """Temporarily remove the ORM guards (for tests that seed bad state)."""
    unregister_immutability_listeners()
    yield
    register_immutability_listeners()


@pytest.fixture
def clock():
    # Use naive datetimes for SQLite compatibility (SQLite strips tzinfo)
    return DeterministicClock(fixed_time=T0)


@pytest.fixture
def authorization():
    return SettlementAuthorization(automation_identity=AUTOMATION, owner_identity=OWNER)


# =============================================================================
# Obligation helpers
# =============================================================================


def make_obligation(ledger_id: int, next_due: datetime = T0, **overrides) -> Obligation:
    """Build an Obligation DTO with sensible defaults."""
    values = dict(
        key=ObligationKey(network_id=NETWORK_ID, ledger_id=ledger_id),
        payer_id=f"payer-{ledger_id}",
        payee_id=f"payee-{ledger_id}",
        payer_address=f"0x{ledger_id:040x}",
        payee_address=f"0x{ledger_id + 1000:040x}",
        amount=10_000_000,
        interval_seconds=MONTH,
        next_due=next_due,
        service_name=f"Service {ledger_id}",
    )
    values.update(overrides)
    return Obligation(**values)


def seed_obligation(session, ledger_id: int, next_due: datetime = T0, **overrides) -> ObligationKey:
    """Insert one obligation and commit.  Returns its key."""
    dto = make_obligation(ledger_id, next_due=next_due, **overrides)
    session.add(ObligationModel.from_dto(dto, created_by_id=TEST_ACTOR_ID))
    session.commit()
    return dto.key


def load_obligation(session_factory, key: ObligationKey) -> Obligation:
    """Read the committed state of ``key`` through a fresh session."""
    s = session_factory()
    try:
        row = s.query(ObligationModel).filter_by(
            network_id=key.network_id, ledger_id=key.ledger_id,
        ).one()
        return row.to_dto()
    finally:
        s.close()


@pytest.fixture
def obligation_factory(session):
    """Seed obligations: ``obligation_factory(ledger_id, next_due=..., ...)``."""

    def _create(ledger_id: int, next_due: datetime = T0, **overrides) -> ObligationKey:
        return seed_obligation(session, ledger_id, next_due=next_due, **overrides)

    return _create


# =============================================================================
# Fake settlement capability
# =============================================================================


class FakeSettlementCapability:
    """
    Scripted SettlementCapability.

    Per-key behaviour is one of:
        "ok"        -> confirmed receipt with a generated tx ref
        "declined"  -> LedgerSettlementError
        "reverted"  -> unconfirmed receipt
        Exception   -> raised as-is
    Unscripted keys succeed.  ``block`` (an Event) makes every call wait
    until it is set, signalling ``entered`` first.
    """

    def __init__(self, ready: bool = True, config=None, signing_key=None, rpc_url=None):
        self.ready = ready
        self.signing_key = signing_key
        self.rpc_url = rpc_url
        self.script: dict[ObligationKey, object] = {}
        self.calls: list[ObligationKey] = []
        self.block: threading.Event | None = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def ensure_ready(self) -> None:
        if not self.ready:
            raise SigningCredentialMissingError("PROCESSOR_PRIVATE_KEY")

    def settle(self, key: ObligationKey) -> SettlementReceipt:
        with self._lock:
            self.calls.append(key)
        self.entered.set()
        if self.block is not None:
            self.block.wait(timeout=10)

        behaviour = self.script.get(key, "ok")
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour == "declined":
            raise LedgerSettlementError(str(key), "insufficient allowance")
        if behaviour == "reverted":
            return SettlementReceipt(tx_ref=f"0xrev{key.ledger_id}", confirmed=False)
        return SettlementReceipt(tx_ref=f"0xtx{key.ledger_id}-{len(self.calls)}")

    def calls_for(self, key: ObligationKey) -> int:
        with self._lock:
            return sum(1 for k in self.calls if k == key)


@pytest.fixture
def capability():
    return FakeSettlementCapability()


def days(n: int) -> timedelta:
    return timedelta(days=n)
