#!/usr/bin/env python3
"""
Operate settlement automation from the command line.

Usage:
    python3 scripts/automation_cli.py [--config PATH] [--db-url URL] <command>

Commands:
    init-db            Create the settlement tables.
    status             Print running flag, due count and last check.
    due                List obligations the next cycle would consider.
    trigger            Run one settlement cycle now.
    settle KEY         Settle one obligation ("<network_id>:<ledger_id>").
    run                Run the periodic scheduler in the foreground (Ctrl-C stops).

``trigger``, ``settle`` and ``run`` build the ledger client from
``ledger.capability_factory`` (by default the payment contract client) and
refuse to start when it cannot be built.  The factory receives the config,
the signing credential from the variable named by ``ledger.signing_key_env``
(default PROCESSOR_PRIVATE_KEY) and the node URL from ``ledger.rpc_url_env``
(default LEDGER_RPC_URL).  Read-only commands never build it.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from settlement_kernel.exceptions import ConfigurationError  # noqa: E402


class _UnconfiguredCapability:
    """Stand-in ledger client for read-only commands."""

    def ensure_ready(self) -> None:
        raise ConfigurationError("read-only command has no ledger client")

    def settle(self, key):
        raise ConfigurationError("read-only command has no ledger client")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Settlement automation control.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to automation YAML (default: settlement_config/automation.yaml).",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (overrides database.url from the config).",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log at DEBUG level.",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create the settlement tables.")
    sub.add_parser("status", help="Show automation status.")
    sub.add_parser("due", help="List due obligations.")
    sub.add_parser("trigger", help="Run one settlement cycle now.")
    settle = sub.add_parser("settle", help="Settle one obligation now.")
    settle.add_argument("key", help='Obligation key, "<network_id>:<ledger_id>".')
    settle.add_argument(
        "--caller",
        default=None,
        help="Identity to act as (default: the configured owner).",
    )
    sub.add_parser("run", help="Run the scheduler until interrupted.")

    return parser.parse_args(argv)


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    import logging

    from settlement_config import (
        get_active_config,
        resolve_rpc_url,
        resolve_signing_key,
    )
    from settlement_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from settlement_kernel.db.immutability import register_immutability_listeners
    from settlement_kernel.logging_config import configure_logging

    from settlement_batch.domain.types import ObligationKey
    from settlement_batch.orchestrator import SettlementOrchestrator
    from settlement_batch.services.ledger import build_capability

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = get_active_config(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    try:
        init_engine_from_url(args.db_url or config.database_url)
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1
    register_immutability_listeners()

    if args.command == "init-db":
        create_tables()
        print("Settlement tables created.")
        return 0

    needs_ledger = args.command in ("trigger", "settle", "run")
    if not needs_ledger:
        capability = _UnconfiguredCapability()
    elif config.capability_factory:
        try:
            capability = build_capability(
                config.capability_factory,
                config=config,
                signing_key=resolve_signing_key(config),
                rpc_url=resolve_rpc_url(config),
            )
        except ConfigurationError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
    else:
        print(
            "ERROR: ledger.capability_factory is not configured; "
            f"cannot run {args.command!r}.",
            file=sys.stderr,
        )
        return 1

    orchestrator = SettlementOrchestrator.from_config(
        config, get_session_factory(), capability,
    )
    control = orchestrator.create_control()

    if args.command == "status":
        _print(control.status())
        return 0

    if args.command == "due":
        _print(control.due_obligations())
        return 0

    if args.command == "trigger":
        response = control.trigger()
        _print(response)
        cycle = orchestrator.create_scheduler().last_cycle
        if cycle is not None:
            print(
                f"Cycle {cycle.cycle_id}: {cycle.status.value} "
                f"(success={cycle.success_count}, failed={cycle.failure_count}, "
                f"terminated={cycle.terminal_count}, skipped={cycle.skipped_count})"
            )
        return 0 if response["success"] else 2

    if args.command == "settle":
        try:
            key = ObligationKey.parse(args.key)
        except ValueError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        caller = args.caller or config.owner_identity
        try:
            result = orchestrator.create_scheduler().settle_one(key, caller)
        except Exception as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        _print({
            "key": str(result.key),
            "outcome": result.outcome.value,
            "txRef": result.tx_ref,
            "storeError": result.store_error,
            "failureReason": result.failure_reason,
            "skipReason": result.skip_reason.value if result.skip_reason else None,
            "cancellationReason": (
                result.cancellation_reason.value if result.cancellation_reason else None
            ),
        })
        return 0

    # run
    done = threading.Event()

    def _handle_signal(signum, frame):
        done.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    _print(control.start())
    try:
        while not done.wait(timeout=1.0):
            pass
    finally:
        _print(control.stop())
    return 0


if __name__ == "__main__":
    sys.exit(main())
