"""Tests for scripts/automation_cli.py against a file-backed SQLite store."""

import json
from datetime import datetime

import pytest
import yaml

from scripts.automation_cli import main
from settlement_kernel.db.engine import get_session_factory, reset_engine
from tests.conftest import AUTOMATION, OWNER, seed_obligation

# Safely in the past for the real system clock the CLI uses
PAST_DUE = datetime(2020, 1, 1)

CONFIG = {
    "config_id": "cli-test",
    "network_id": 8453,
    "identities": {"automation": AUTOMATION, "owner": OWNER},
    "automation": {"lookahead_seconds": 0},
    "ledger": {
        "signing_key_env": "TEST_SIGNING_KEY",
        "settlement_timeout_seconds": 30,
        "capability_factory": "tests.conftest:FakeSettlementCapability",
    },
}


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'settlement.db'}"


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "automation.yaml"
    path.write_text(yaml.safe_dump(CONFIG))
    return path


@pytest.fixture(autouse=True)
def _reset_engine():
    yield
    reset_engine()


def _run(capsys, *argv) -> tuple[int, str]:
    code = main(list(argv))
    return code, capsys.readouterr().out


class TestReadOnlyCommands:

    def test_init_db_then_status(self, capsys, db_url):
        code, out = _run(capsys, "--db-url", db_url, "init-db")
        assert code == 0
        assert "Settlement tables created" in out

        code, out = _run(capsys, "--db-url", db_url, "status")
        assert code == 0
        payload = json.loads(out)
        assert payload["success"] is True
        assert payload["data"]["running"] is False

    def test_due_lists_obligations(self, capsys, db_url, config_path):
        _run(capsys, "--config", str(config_path), "--db-url", db_url, "init-db")
        session = get_session_factory()()
        try:
            seed_obligation(session, 1, next_due=PAST_DUE)
        finally:
            session.close()

        code, out = _run(capsys, "--config", str(config_path), "--db-url", db_url, "due")

        assert code == 0
        assert json.loads(out)["count"] == 1

    def test_trigger_without_ledger_node_fails(self, capsys, db_url, monkeypatch):
        monkeypatch.delenv("LEDGER_RPC_URL", raising=False)
        _run(capsys, "--db-url", db_url, "init-db")

        assert main(["--db-url", db_url, "trigger"]) == 1
        assert "LEDGER_RPC_URL" in capsys.readouterr().err

    def test_trigger_requires_capability_factory(self, capsys, db_url, tmp_path):
        path = tmp_path / "no-factory.yaml"
        path.write_text(yaml.safe_dump(
            {**CONFIG, "ledger": {**CONFIG["ledger"], "capability_factory": None}}
        ))
        _run(capsys, "--config", str(path), "--db-url", db_url, "init-db")

        assert main(["--config", str(path), "--db-url", db_url, "trigger"]) == 1
        assert "capability_factory" in capsys.readouterr().err

    def test_bad_config_path(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "status"]) == 1


class TestSettlementCommands:

    def test_settle_one(self, capsys, db_url, config_path, monkeypatch):
        monkeypatch.setenv("TEST_SIGNING_KEY", "0xsecret")
        _run(capsys, "--config", str(config_path), "--db-url", db_url, "init-db")
        session = get_session_factory()()
        try:
            key = seed_obligation(session, 1, next_due=PAST_DUE)
        finally:
            session.close()

        code, out = _run(
            capsys, "--config", str(config_path), "--db-url", db_url, "settle", str(key),
        )

        assert code == 0
        payload = json.loads(out)
        assert payload["outcome"] == "success"
        assert payload["key"] == str(key)

    def test_settle_rejects_malformed_key(self, capsys, db_url, config_path, monkeypatch):
        monkeypatch.setenv("TEST_SIGNING_KEY", "0xsecret")
        _run(capsys, "--config", str(config_path), "--db-url", db_url, "init-db")
        assert main(["--config", str(config_path), "--db-url", db_url, "settle", "nope"]) == 1

    def test_trigger_without_credential_reports_aborted_cycle(
        self, capsys, db_url, config_path, monkeypatch,
    ):
        monkeypatch.delenv("TEST_SIGNING_KEY", raising=False)
        _run(capsys, "--config", str(config_path), "--db-url", db_url, "init-db")
        session = get_session_factory()()
        try:
            seed_obligation(session, 1, next_due=PAST_DUE)
        finally:
            session.close()

        code, out = _run(capsys, "--config", str(config_path), "--db-url", db_url, "trigger")

        assert code == 0
        assert "aborted" in out

