from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import threading

from cellsim.accounts import load_accounts
from cellsim.client import NodeClient
from cellsim.config import ConfigError, load_init_config, load_run_config
from cellsim.generator import GeneratorError
from cellsim.ledger import CellLedger, LedgerError
from cellsim.simulator import Simulator
from cellsim.sync import SyncError

log = logging.getLogger("cellsim")

LOG_ENV = "CELLSIM_LOG"


def _configure_logging(level: str | None) -> None:
    name = (level or os.environ.get(LOG_ENV) or "info").strip().upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        raise ConfigError(f"unknown log level '{level or os.environ.get(LOG_ENV)}'")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def cmd_init(args: argparse.Namespace) -> None:
    metadata = load_init_config(args.config)
    accounts = load_accounts(metadata)
    CellLedger.init(args.data_dir, metadata)
    print(
        json.dumps(
            {
                "data_dir": args.data_dir,
                "start_block": metadata.start_block.number,
                "accounts": [account.describe() for account in accounts.values()],
            },
            indent=2,
        )
    )


def cmd_run(args: argparse.Namespace) -> None:
    config = load_run_config(args.config)
    ledger = CellLedger.open(
        args.data_dir,
        max_rollback_depth=config.sync.max_rollback_depth,
        pending_expiry_blocks=config.sync.pending_expiry_blocks,
    )
    client = NodeClient(args.jsonrpc_url, timeout_ms=config.client.request_timeout)
    stop_event = threading.Event()

    def _request_stop(signum: int, _frame: object) -> None:
        log.info("received signal %d, stopping after the current step", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    simulator = Simulator.from_config(config, ledger, client, stop_event=stop_event)
    log.info("simulating against %s with %d accounts", client.url, len(simulator.accounts))
    simulator.run()


def cmd_status(args: argparse.Namespace) -> None:
    ledger = CellLedger.open(args.data_dir)
    metadata = ledger.metadata()
    summary = ledger.summary()
    summary["start_block"] = metadata.start_block.number
    print(json.dumps(summary, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cellsim",
        description="Generate a steady stream of signed transactions against a CKB node.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create a data directory from an init config")
    init.add_argument("--data-dir", required=True, help="Data directory to create")
    init.add_argument("--config", required=True, help="Init config YAML (start block, lock scripts, accounts)")
    init.set_defaults(func=cmd_init)

    run = subparsers.add_parser("run", help="Run the transaction simulator")
    run.add_argument("--data-dir", required=True, help="Existing data directory")
    run.add_argument("--jsonrpc-url", required=True, help="CKB node JSON-RPC URL")
    run.add_argument("--config", required=True, help="Run config YAML")
    run.add_argument("--log-level", help=f"Log level (default: ${LOG_ENV} or info)")
    run.set_defaults(func=cmd_run)

    status = subparsers.add_parser("status", help="Show the synced height and cells per lock")
    status.add_argument("--data-dir", required=True, help="Existing data directory")
    status.set_defaults(func=cmd_status)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    try:
        _configure_logging(getattr(args, "log_level", None))
        args.func(args)
    except ConfigError as exc:
        print(f"Config error: {exc}")
        raise SystemExit(1) from exc
    except (LedgerError, SyncError, GeneratorError, ValueError) as exc:
        log.error("fatal: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
