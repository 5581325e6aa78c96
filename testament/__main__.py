"""
Command line entry point.

    python -m testament serve [--db PATH] [--host HOST] [--port PORT]
    python -m testament demo  [--db PATH] [--serve]

serve   runs the read API over an existing replica database
demo    runs a will through its whole lifecycle in-process, projects the
        events into the replica database and prints the projected will
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn

from .api import create_app
from .config import get_settings
from .logging_config import setup_logging
from .manager import WillManager
from .projection import ProjectionEngine, ReplicaStore
from .units.will import DEFAULT_CHECK_IN_PERIOD, DEFAULT_DISPUTE_PERIOD

logger = logging.getLogger("testament")

TESTATOR = "0x" + "a1" * 20
BENEFICIARY = "0x" + "b2" * 20
GUARDIAN = "0x" + "c3" * 20


def run_demo(database_path: str, backfill_window: Optional[int] = None) -> Dict[str, Any]:
    """
    Create, fund and execute a will, projecting every event as it happens.

    Returns:
        The projected will details as served by GET /will/{id}.
    """
    manager = WillManager(initial_time=datetime(2025, 1, 1))
    store = ReplicaStore(database_path)
    store.reset()
    engine = ProjectionEngine(
        manager.events, store,
        backfill_window=backfill_window if backfill_window is not None else get_settings().backfill_window,
    )
    engine.start()
    try:
        manager.fund(TESTATOR, 15)
        manager.create_will(TESTATOR, DEFAULT_CHECK_IN_PERIOD, DEFAULT_DISPUTE_PERIOD)
        manager.add_beneficiary(TESTATOR, BENEFICIARY, 60)
        manager.add_beneficiary(TESTATOR, GUARDIAN, 40, is_guardian=True)
        manager.deposit_locked(TESTATOR, 10)
        manager.deposit_flexible(TESTATOR, 5)
        logger.info("Will funded: %s", manager.vault_balances(TESTATOR))

        manager.advance(DEFAULT_CHECK_IN_PERIOD + DEFAULT_DISPUTE_PERIOD + 1)
        logger.info("Phase after silence: %s", manager.phase(TESTATOR))
        payouts = manager.execute_will(BENEFICIARY, TESTATOR)
        logger.info("Payouts: %s", payouts)
    finally:
        engine.stop()

    return store.get_will_details(TESTATOR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="testament", description="Will lifecycle and replica API")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Serve the read API over a replica database")
    serve.add_argument("--db", default=None, help="Replica database path")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    demo = commands.add_parser("demo", help="Run the end-to-end will scenario")
    demo.add_argument("--db", default=None, help="Replica database path")
    demo.add_argument("--serve", action="store_true", help="Serve the API after the scenario")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level)
    database_path = args.db or settings.database_path

    if args.command == "demo":
        details = run_demo(database_path)
        print(json.dumps(details, indent=2))
        if not args.serve:
            return 0

    app = create_app(ReplicaStore(database_path), settings)
    uvicorn.run(
        app,
        host=getattr(args, "host", None) or settings.api_host,
        port=getattr(args, "port", None) or settings.api_port,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
