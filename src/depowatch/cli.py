"""Command-line entry point.

Usage:
    python -m depowatch monitor --chain eth,sol [--once]
    python -m depowatch scan --chain all [--interval 600 | --auto]

Chain names are case-insensitive; ``eth``, ``binance``/``bnb`` and ``sol``
are accepted as aliases and ``all`` selects every chain.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from depowatch.chains import parse_chain_selection
from depowatch.config import get_settings
from depowatch.directory import AddressDirectory
from depowatch.endpoints import EndpointPool
from depowatch.ledger.database import close_db, get_session_factory, init_db
from depowatch.ledger.writer import DepositLedgerWriter
from depowatch.orchestrator import ScanOrchestrator, ScanStatus
from depowatch.scanner.cursors import CursorStore
from depowatch.scanner.runner import RealtimeMonitor
from depowatch.snapshot.engine import BalanceSnapshotEngine
from depowatch.snapshot.store import SnapshotStore

logger = logging.getLogger(__name__)


def chain_list(value: str) -> list[str]:
    """argparse type for the chain selection flag."""
    try:
        return parse_chain_selection(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="depowatch", description="Multi-chain deposit detection"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser("monitor", help="Run the real-time block/slot monitor")
    monitor.add_argument(
        "--chain",
        type=chain_list,
        default=parse_chain_selection("all"),
        help="Comma-separated chains: ethereum, bsc, solana, aliases or all (default: all)",
    )
    monitor.add_argument("--once", action="store_true", help="Run one cycle and exit")
    monitor.add_argument(
        "--interval", type=int, default=None, help="Seconds between cycles (default: 15)"
    )

    scan = subparsers.add_parser("scan", help="Run a balance snapshot pass")
    scan.add_argument(
        "--chain",
        type=chain_list,
        default=parse_chain_selection("all"),
        help="Comma-separated chains: ethereum, bsc, solana, aliases or all (default: all)",
    )
    scan.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Repeat the pass every N seconds (default: run once)",
    )
    scan.add_argument(
        "--auto",
        action="store_true",
        help="Repeat the pass every SCAN_INTERVAL seconds (default: 600)",
    )
    return parser


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run_monitor(chains: list[str], once: bool, interval: Optional[int]) -> int:
    settings = get_settings()
    if interval:
        settings = settings.model_copy(update={"polling_interval": interval})

    await init_db()
    session_factory = get_session_factory()
    pool = EndpointPool(settings)
    monitor = RealtimeMonitor(
        chains,
        pool,
        AddressDirectory(session_factory),
        DepositLedgerWriter(session_factory, settings),
        CursorStore(session_factory),
        settings,
    )

    try:
        if once:
            reports = await monitor.scan_once()
            found = sum(len(r.candidates) for r in reports.values())
            skipped = sum(r.skipped_units for r in reports.values())
            print(f"Detected {found} deposits ({skipped} skipped units)")
        else:
            await monitor.run()
    finally:
        logger.debug(f"Endpoint status: {pool.status()}")
        await pool.close()
        await close_db()
    return 0


async def run_scan(chains: list[str], interval: Optional[int]) -> int:
    settings = get_settings()

    await init_db()
    session_factory = get_session_factory()
    pool = EndpointPool(settings)
    orchestrator = ScanOrchestrator(
        AddressDirectory(session_factory),
        BalanceSnapshotEngine(pool, settings),
        DepositLedgerWriter(session_factory, settings),
        SnapshotStore(settings.snapshot_file),
        settings,
    )

    try:
        if interval:
            await orchestrator.run_periodically(chains, interval)
            return 0

        run = await orchestrator.run(chains)
        for chain, error in run.chain_errors.items():
            print(f"{chain}: {error}")
        print(
            f"Scan {run.scan_id} {run.status.value}: {run.deposits_recorded} deposits, "
            f"{run.skipped_units} skipped units"
        )
        return 0 if run.status == ScanStatus.COMPLETED else 1
    finally:
        await pool.close()
        await close_db()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.debug)
    logger.debug(f"Settings: {settings.get_safe_dict()}")

    try:
        if args.command == "monitor":
            return asyncio.run(run_monitor(args.chain, args.once, args.interval))
        interval = args.interval or (settings.scan_interval if args.auto else None)
        return asyncio.run(run_scan(args.chain, interval))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
