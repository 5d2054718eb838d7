"""
Contract ledger capability -- settles obligations through the payment
contract with web3.py.

Contract:
    ``settle(key)`` signs ``processPayment(key.ledger_id)`` locally with the
    automation account, sends the raw transaction, waits for the receipt and
    reports ``confirmed`` only for receipt status 1.  A mined but reverted
    transaction (status 0) comes back as ``confirmed=False`` with its tx
    hash; the executor records it as a ledger failure.

Architecture: settlement_batch/services.  The only module that talks to a
    ledger node.  It reads no environment itself: the CLI resolves the
    signing key and node URL through ``settlement_config`` and hands them to
    ``contract_capability``.

Invariants enforced:
    - Transactions are signed with the resolved key before they leave the
      process.  The key is never logged and never appears in error text.
    - Only obligations on the configured chain are settled.
    - Nonce lookup, signing and submission are serialized per capability,
      so a call abandoned by the TimeoutGuard cannot share a nonce with the
      next one.

Failure modes:
    - SigningCredentialMissingError from ``ensure_ready()``/``settle()``
      when no key was supplied.
    - ConfigurationError from construction on a malformed key, and from
      ``contract_capability()`` without a node URL or contract address.
    - LedgerSettlementError when the node rejects the call, for example a
      gas estimate that reverts because the payment is not due on chain.
    - SettlementTimeoutError when no receipt arrives in time.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from settlement_kernel.exceptions import (
    ConfigurationError,
    LedgerSettlementError,
    SettlementTimeoutError,
    SigningCredentialMissingError,
)
from settlement_kernel.logging_config import get_logger

from settlement_batch.domain.types import ObligationKey, SettlementReceipt

if TYPE_CHECKING:
    from settlement_config.schema import AutomationConfig

logger = get_logger("batch.contract_ledger")

RECEIPT_STATUS_SUCCESS = 1

# Only the entry point the automation calls.
SETTLEMENT_CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "processPayment",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "subscriptionId", "type": "uint256"}],
        "outputs": [],
    },
]


class ContractSettlementCapability:
    """SettlementCapability backed by a web3 client and a local signing key."""

    def __init__(
        self,
        web3: Web3,
        contract_address: str,
        signing_key: str | None,
        chain_id: int,
        receipt_timeout_seconds: float = 120,
        signing_key_env: str = "PROCESSOR_PRIVATE_KEY",
    ):
        if receipt_timeout_seconds <= 0:
            raise ValueError(
                f"receipt_timeout_seconds must be positive, got {receipt_timeout_seconds}"
            )
        self._web3 = web3
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout_seconds
        self._signing_key_env = signing_key_env
        self._contract = web3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=SETTLEMENT_CONTRACT_ABI,
        )
        self._account = None
        if signing_key:
            try:
                self._account = Account.from_key(signing_key.strip())
            except Exception:
                raise ConfigurationError(
                    f"{signing_key_env} does not hold a valid private key"
                ) from None
        self._submit_lock = threading.Lock()

    @property
    def sender(self) -> str | None:
        """Address settlements are sent from, or None without a key."""
        return self._account.address if self._account is not None else None

    @property
    def contract_address(self) -> str:
        return self._contract.address

    def ensure_ready(self) -> None:
        if self._account is None:
            raise SigningCredentialMissingError(self._signing_key_env)

    def settle(self, key: ObligationKey) -> SettlementReceipt:
        self.ensure_ready()
        if key.network_id != self._chain_id:
            raise LedgerSettlementError(
                str(key),
                f"obligation is on network {key.network_id}, "
                f"capability signs for {self._chain_id}",
            )

        try:
            tx_hash = self._submit(key)
        except Web3Exception as exc:
            raise LedgerSettlementError(
                str(key), f"submission rejected: {exc}",
            ) from exc
        tx_ref = Web3.to_hex(tx_hash)
        logger.info(
            "settlement_submitted",
            extra={"obligation_key": str(key), "tx_ref": tx_ref},
        )

        try:
            receipt = self._web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout,
            )
        except TimeExhausted:
            raise SettlementTimeoutError(
                str(key), self._receipt_timeout,
            ) from None

        confirmed = receipt["status"] == RECEIPT_STATUS_SUCCESS
        if not confirmed:
            logger.warning(
                "settlement_reverted",
                extra={"obligation_key": str(key), "tx_ref": tx_ref},
            )
        return SettlementReceipt(tx_ref=tx_ref, confirmed=confirmed)

    def _submit(self, key: ObligationKey) -> bytes:
        sender = self._account.address
        with self._submit_lock:
            nonce = self._web3.eth.get_transaction_count(sender, "pending")
            tx = self._contract.functions.processPayment(
                key.ledger_id,
            ).build_transaction({
                "from": sender,
                "chainId": self._chain_id,
                "nonce": nonce,
            })
            signed = self._account.sign_transaction(tx)
            return self._web3.eth.send_raw_transaction(signed.raw_transaction)


def contract_capability(
    config: AutomationConfig,
    signing_key: str | None = None,
    rpc_url: str | None = None,
) -> ContractSettlementCapability:
    """Capability factory for ``ledger.capability_factory``.

    Raises:
        ConfigurationError: If the node URL or contract address is missing,
            or the signing key is malformed.
    """
    if not rpc_url:
        raise ConfigurationError(
            f"Ledger node URL not configured (set {config.rpc_url_env})"
        )
    if not config.contract_address:
        raise ConfigurationError("ledger.contract_address is not configured")

    web3 = Web3(Web3.HTTPProvider(
        rpc_url,
        request_kwargs={"timeout": config.settlement_timeout_seconds},
    ))
    return ContractSettlementCapability(
        web3,
        config.contract_address,
        signing_key,
        chain_id=config.network_id,
        receipt_timeout_seconds=config.settlement_timeout_seconds,
        signing_key_env=config.signing_key_env,
    )
