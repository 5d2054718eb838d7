"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads the automation YAML file and parses it into the frozen
``settlement_config.schema`` dataclasses.  Runtime callers go through
``settlement_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    DEFAULT_AUTO_CANCEL_THRESHOLD,
    DEFAULT_CYCLE_INTERVAL_SECONDS,
    DEFAULT_LOOKAHEAD_SECONDS,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_RPC_URL_ENV,
    DEFAULT_SETTLEMENT_TIMEOUT_SECONDS,
    DEFAULT_SIGNING_KEY_ENV,
    MAX_BATCH_SIZE_LIMIT,
    AutomationConfig,
    IdentityConfig,
)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def parse_identities(data: dict[str, Any]) -> IdentityConfig:
    """Parse the identities block.

    Raises:
        KeyError: if ``automation`` or ``owner`` is missing.
        ValueError: if either is blank.
    """
    automation = str(data["automation"]).strip()
    owner = str(data["owner"]).strip()
    if not automation or not owner:
        raise ValueError("automation and owner identities must be non-empty")
    return IdentityConfig(automation=automation, owner=owner)


def parse_automation_config(data: dict[str, Any]) -> AutomationConfig:
    """
    Parse an AutomationConfig from the top-level YAML dict.

    Raises:
        KeyError: if required keys are missing.
        ValueError: if a value is out of range.
    """
    automation = data.get("automation") or {}
    ledger = data.get("ledger") or {}
    database = data.get("database") or {}

    lookahead = automation.get("lookahead_seconds", DEFAULT_LOOKAHEAD_SECONDS)
    if isinstance(lookahead, bool) or not isinstance(lookahead, int) or lookahead < 0:
        raise ValueError(f"lookahead_seconds must be a non-negative integer, got {lookahead!r}")

    max_batch_size = _positive_int(automation, "max_batch_size", DEFAULT_MAX_BATCH_SIZE)
    if max_batch_size > MAX_BATCH_SIZE_LIMIT:
        raise ValueError(
            f"max_batch_size {max_batch_size} exceeds limit {MAX_BATCH_SIZE_LIMIT}"
        )

    contract_address = ledger.get("contract_address")
    if contract_address is not None and not _ADDRESS_RE.match(str(contract_address)):
        raise ValueError(
            f"contract_address must be 0x followed by 40 hex digits, got {contract_address!r}"
        )

    factory = ledger.get("capability_factory")
    if factory is not None and ":" not in str(factory):
        raise ValueError(
            f"capability_factory must look like 'module:callable', got {factory!r}"
        )

    return AutomationConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        network_id=int(data["network_id"]),
        identities=parse_identities(data["identities"]),
        cycle_interval_seconds=_positive_int(
            automation, "cycle_interval_seconds", DEFAULT_CYCLE_INTERVAL_SECONDS,
        ),
        lookahead_seconds=lookahead,
        max_batch_size=max_batch_size,
        auto_cancel_threshold=_positive_int(
            automation, "auto_cancel_threshold", DEFAULT_AUTO_CANCEL_THRESHOLD,
        ),
        settlement_timeout_seconds=_positive_int(
            ledger, "settlement_timeout_seconds", DEFAULT_SETTLEMENT_TIMEOUT_SECONDS,
        ),
        signing_key_env=ledger.get("signing_key_env", DEFAULT_SIGNING_KEY_ENV),
        rpc_url_env=ledger.get("rpc_url_env", DEFAULT_RPC_URL_ENV),
        contract_address=contract_address,
        capability_factory=factory,
        database_url=database.get("url", "sqlite:///settlement.db"),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
