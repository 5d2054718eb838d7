"""
Tests for automation configuration loading.

Covers:
- Shipped automation.yaml parses with the documented defaults
- Schema violations raise KeyError / ValueError
- Checksum determinism
- Signing credential and ledger node URL resolution from the environment
"""

import copy

import pytest
import yaml

from settlement_config import (
    AutomationConfig,
    IdentityConfig,
    get_active_config,
    resolve_rpc_url,
    resolve_signing_key,
)
from settlement_config.loader import compute_checksum, parse_automation_config

BASE = {
    "config_id": "test",
    "version": 2,
    "network_id": 8453,
    "identities": {"automation": "0xaaa", "owner": "0xbbb"},
    "automation": {
        "cycle_interval_seconds": 3600,
        "lookahead_seconds": 600,
        "max_batch_size": 20,
        "auto_cancel_threshold": 3,
    },
    "ledger": {
        "signing_key_env": "TEST_SIGNING_KEY",
        "settlement_timeout_seconds": 30,
        "capability_factory": "tests.conftest:FakeSettlementCapability",
    },
    "database": {"url": "sqlite://"},
}


def _with(path: tuple[str, ...], value):
    data = copy.deepcopy(BASE)
    target = data
    for part in path[:-1]:
        target = target[part]
    target[path[-1]] = value
    return data


def _without(*path: str):
    data = copy.deepcopy(BASE)
    target = data
    for part in path[:-1]:
        target = target[part]
    del target[path[-1]]
    return data


class TestShippedConfig:

    def test_default_file_loads(self):
        config = get_active_config()
        assert config.config_id == "settlement-automation"
        assert config.cycle_interval_seconds == 6 * 3600
        assert config.max_batch_size == 50
        assert config.auto_cancel_threshold == 3
        assert config.signing_key_env == "PROCESSOR_PRIVATE_KEY"
        assert config.capability_factory == (
            "settlement_batch.services.contract_ledger:contract_capability"
        )
        assert config.rpc_url_env == "LEDGER_RPC_URL"
        assert config.contract_address is None
        assert len(config.checksum) == 64

    def test_trace_logged(self, captured_logs):
        config = get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "SETTLEMENT_CONFIG_TRACE"]
        assert traces
        assert traces[-1]["checksum"] == config.checksum

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "automation.yaml"
        path.write_text(yaml.safe_dump(BASE))

        config = get_active_config(path)

        assert config.config_id == "test"
        assert config.database_url == "sqlite://"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")


class TestParse:

    def test_full_document(self):
        config = parse_automation_config(BASE)
        assert config.identities == IdentityConfig(automation="0xaaa", owner="0xbbb")
        assert config.automation_identity == "0xaaa"
        assert config.owner_identity == "0xbbb"
        assert config.lookahead_seconds == 600
        assert config.settlement_timeout_seconds == 30
        assert config.version == 2

    def test_ledger_contract_settings(self):
        address = "0x" + "Ab" * 20
        data = _with(("ledger", "contract_address"), address)
        data["ledger"]["rpc_url_env"] = "TEST_RPC_URL"

        config = parse_automation_config(data)

        assert config.contract_address == address
        assert config.rpc_url_env == "TEST_RPC_URL"

    def test_defaults_applied(self):
        data = {
            "config_id": "minimal",
            "network_id": 1,
            "identities": {"automation": "0xaaa", "owner": "0xbbb"},
        }
        config = parse_automation_config(data)
        assert config.cycle_interval_seconds == 21600
        assert config.lookahead_seconds == 21600
        assert config.settlement_timeout_seconds == 120
        assert config.version == 1

    @pytest.mark.parametrize(
        "path",
        [("config_id",), ("network_id",), ("identities",), ("identities", "owner")],
    )
    def test_missing_required_key(self, path):
        with pytest.raises(KeyError):
            parse_automation_config(_without(*path))

    @pytest.mark.parametrize(
        "path, value",
        [
            (("automation", "max_batch_size"), 51),
            (("automation", "max_batch_size"), 0),
            (("automation", "cycle_interval_seconds"), -5),
            (("automation", "auto_cancel_threshold"), True),
            (("automation", "lookahead_seconds"), -1),
            (("automation", "lookahead_seconds"), "soon"),
            (("ledger", "settlement_timeout_seconds"), 1.5),
            (("ledger", "capability_factory"), "no_colon"),
            (("ledger", "contract_address"), "0x1234"),
            (("ledger", "contract_address"), "0x" + "g" * 40),
            (("ledger", "contract_address"), 0x1234),
            (("identities", "automation"), "  "),
        ],
    )
    def test_invalid_values(self, path, value):
        with pytest.raises(ValueError):
            parse_automation_config(_with(path, value))


class TestChecksum:

    def test_deterministic(self):
        assert compute_checksum(BASE) == compute_checksum(copy.deepcopy(BASE))

    def test_changes_with_content(self):
        assert compute_checksum(BASE) != compute_checksum(
            _with(("automation", "max_batch_size"), 10)
        )


class TestSigningKey:

    def _config(self) -> AutomationConfig:
        return parse_automation_config(BASE)

    def test_resolved_from_environ(self):
        assert resolve_signing_key(self._config(), {"TEST_SIGNING_KEY": "0xkey"}) == "0xkey"

    @pytest.mark.parametrize("environ", [{}, {"TEST_SIGNING_KEY": ""}, {"TEST_SIGNING_KEY": "  "}])
    def test_absent_or_blank(self, environ):
        assert resolve_signing_key(self._config(), environ) is None

    def test_process_environment_default(self, monkeypatch):
        monkeypatch.setenv("TEST_SIGNING_KEY", "0xfromenv")
        assert resolve_signing_key(self._config()) == "0xfromenv"


class TestRpcUrl:

    def _config(self) -> AutomationConfig:
        data = copy.deepcopy(BASE)
        data["ledger"]["rpc_url_env"] = "TEST_RPC_URL"
        return parse_automation_config(data)

    def test_resolved_from_environ(self):
        environ = {"TEST_RPC_URL": " https://node.example/rpc "}
        assert resolve_rpc_url(self._config(), environ) == "https://node.example/rpc"

    @pytest.mark.parametrize("environ", [{}, {"TEST_RPC_URL": ""}, {"TEST_RPC_URL": "  "}])
    def test_absent_or_blank(self, environ):
        assert resolve_rpc_url(self._config(), environ) is None
