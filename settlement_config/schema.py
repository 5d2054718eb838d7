"""
Automation configuration schema.

Frozen dataclasses that the loader fills from YAML.  ``AutomationConfig``
is the only runtime artifact; the orchestrator translates it into
constructor arguments so nothing below this package imports it.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CYCLE_INTERVAL_SECONDS = 21600  # 6 hours
DEFAULT_LOOKAHEAD_SECONDS = 21600
DEFAULT_MAX_BATCH_SIZE = 50
DEFAULT_AUTO_CANCEL_THRESHOLD = 3
DEFAULT_SETTLEMENT_TIMEOUT_SECONDS = 120
DEFAULT_SIGNING_KEY_ENV = "PROCESSOR_PRIVATE_KEY"
DEFAULT_RPC_URL_ENV = "LEDGER_RPC_URL"

# Upper bound on one batch; matches the on-ledger executor limit.
MAX_BATCH_SIZE_LIMIT = 50


@dataclass(frozen=True)
class IdentityConfig:
    """Identities allowed to drive settlement."""

    automation: str
    owner: str


@dataclass(frozen=True)
class AutomationConfig:
    """Everything the settlement engine needs at runtime."""

    config_id: str
    version: int
    network_id: int
    identities: IdentityConfig
    cycle_interval_seconds: int = DEFAULT_CYCLE_INTERVAL_SECONDS
    lookahead_seconds: int = DEFAULT_LOOKAHEAD_SECONDS
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    auto_cancel_threshold: int = DEFAULT_AUTO_CANCEL_THRESHOLD
    settlement_timeout_seconds: int = DEFAULT_SETTLEMENT_TIMEOUT_SECONDS
    signing_key_env: str = DEFAULT_SIGNING_KEY_ENV
    rpc_url_env: str = DEFAULT_RPC_URL_ENV
    contract_address: str | None = None
    capability_factory: str | None = None
    database_url: str = "sqlite:///settlement.db"
    checksum: str = ""

    @property
    def automation_identity(self) -> str:
        return self.identities.automation

    @property
    def owner_identity(self) -> str:
        return self.identities.owner
