"""
Settlement capability -- the executor's only way to touch the ledger.

Contract:
    A ``SettlementCapability`` submits one settlement for an obligation and
    waits for confirmation.  The executor never builds ledger clients or
    reads signing keys itself; it receives a capability.

Architecture: settlement_batch/services.  Imports from settlement_batch.domain
    and the kernel only.

Invariants enforced:
    - ``ensure_ready()`` is the single fatal-configuration check; it runs
      before any item of a batch.
    - A settlement with no confirmation inside the budget is a per-item
      failure (SettlementTimeoutError), never a batch abort.

Failure modes:
    - SigningCredentialMissingError from ``ensure_ready()``.
    - LedgerSettlementError / SettlementTimeoutError / any exception from
      ``settle()``; all are per-item failures to the executor.
    - ConfigurationError from ``build_capability`` on a bad factory path.
"""

from __future__ import annotations

import importlib
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Protocol, runtime_checkable

from settlement_kernel.exceptions import (
    ConfigurationError,
    SettlementTimeoutError,
    SigningCredentialMissingError,
)
from settlement_kernel.logging_config import get_logger

from settlement_batch.domain.types import ObligationKey, SettlementReceipt

logger = get_logger("batch.ledger")


@runtime_checkable
class SettlementCapability(Protocol):
    """Something able to settle one obligation on the ledger."""

    def ensure_ready(self) -> None:
        """Raise SigningCredentialMissingError if settlements cannot be signed."""
        ...

    def settle(self, key: ObligationKey) -> SettlementReceipt:
        """Submit the settlement for ``key`` and await its confirmation."""
        ...


class CredentialCheckedCapability:
    """Wraps a capability with the signing-credential precondition.

    The wrapped capability is only reached when a signing credential was
    resolved from the environment.
    """

    def __init__(
        self,
        inner: SettlementCapability,
        signing_key: str | None,
        env_var: str,
    ):
        self._inner = inner
        self._signing_key = signing_key
        self._env_var = env_var

    def ensure_ready(self) -> None:
        if not self._signing_key:
            raise SigningCredentialMissingError(self._env_var)
        self._inner.ensure_ready()

    def settle(self, key: ObligationKey) -> SettlementReceipt:
        return self._inner.settle(key)


class TimeoutGuard:
    """Runs a settlement call with a confirmation budget.

    Each call gets its own worker thread so a hung call never blocks the
    next item.  On timeout the call is abandoned, not cancelled: the ledger
    may still confirm it later, and the mirror picks that up through the
    indexer.
    """

    def __init__(self, timeout_seconds: float | None):
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError(
                f"timeout_seconds must be positive, got {timeout_seconds}"
            )
        self.timeout_seconds = timeout_seconds

    def settle(
        self,
        capability: SettlementCapability,
        key: ObligationKey,
    ) -> SettlementReceipt:
        if self.timeout_seconds is None:
            return capability.settle(key)

        pool = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="settlement-call",
        )
        try:
            future = pool.submit(capability.settle, key)
            try:
                return future.result(timeout=self.timeout_seconds)
            except FutureTimeoutError:
                logger.warning(
                    "settlement_call_timed_out",
                    extra={
                        "obligation_key": str(key),
                        "timeout_seconds": self.timeout_seconds,
                    },
                )
                raise SettlementTimeoutError(
                    str(key), self.timeout_seconds,
                ) from None
        finally:
            pool.shutdown(wait=False)


def build_capability(factory_path: str, **kwargs: Any) -> SettlementCapability:
    """Build a capability from a ``"package.module:callable"`` path.

    ``kwargs`` are passed to the callable.

    Raises:
        ConfigurationError: If the path cannot be resolved or the result
            is not a SettlementCapability.
    """
    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"capability_factory must look like 'module:callable', got {factory_path!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(
            f"Cannot import capability module {module_name!r}: {exc}"
        ) from exc

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(
            f"{module_name!r} has no callable {attr!r}"
        )

    capability = factory(**kwargs)
    if not isinstance(capability, SettlementCapability):
        raise ConfigurationError(
            f"{factory_path} returned {type(capability).__name__}, "
            "which does not implement ensure_ready()/settle()"
        )

    logger.info("capability_built", extra={"factory": factory_path})
    return capability
