"""
settlement_config -- single public entrypoint for automation configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``, and the ONLY place that reads the environment:
    the signing credential (``resolve_signing_key``) and the ledger node URL
    (``resolve_rpc_url``).

Architecture position:
    Configuration.  Sits beside ``settlement_kernel`` and below the
    orchestrator and CLI.  Neither the kernel nor the batch services import
    from this package; the orchestrator translates ``AutomationConfig``
    into constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``KeyError`` / ``ValueError`` -- schema violations.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SETTLEMENT_CONFIG_TRACE`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from settlement_config.loader import load_yaml_file, parse_automation_config
from settlement_config.schema import AutomationConfig, IdentityConfig

__all__ = [
    "AutomationConfig",
    "IdentityConfig",
    "get_active_config",
    "resolve_rpc_url",
    "resolve_signing_key",
]

_logger = logging.getLogger("settlement_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "automation.yaml"


def get_active_config(path: Path | str | None = None) -> AutomationConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to the YAML file.  Defaults to
            settlement_config/automation.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value is out of range.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    config = parse_automation_config(load_yaml_file(config_path))

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "network_id": config.network_id,
            "config_path": str(config_path),
        },
    )
    return config


def resolve_signing_key(
    config: AutomationConfig,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Signing credential from the configured environment variable, if set."""
    env = os.environ if environ is None else environ
    value = env.get(config.signing_key_env)
    if value is None or not value.strip():
        return None
    return value


def resolve_rpc_url(
    config: AutomationConfig,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Ledger node URL from ``config.rpc_url_env``, if set."""
    env = os.environ if environ is None else environ
    value = env.get(config.rpc_url_env, "").strip()
    return value or None
