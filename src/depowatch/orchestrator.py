"""Scan orchestrator: drives one balance snapshot pass across chains.

A pass resolves the addresses of each requested chain, snapshots their
balances and writes the resulting deposits through the ledger writer.
Progress travels as events over an ``asyncio.Queue`` to a consumer that keeps
the ``ScanRun`` up to date. At most one pass runs at a time; the real-time
monitor is independent and may run alongside.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from depowatch.chains import get_chain
from depowatch.config import Settings, get_settings
from depowatch.directory import AddressDirectory
from depowatch.errors import DirectoryUnavailable, EndpointExhausted, ScanAlreadyRunning
from depowatch.ledger.writer import DepositLedgerWriter
from depowatch.snapshot.engine import BalanceSnapshotEngine
from depowatch.snapshot.store import SnapshotStore

logger = logging.getLogger(__name__)


class ScanStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScanRun:
    """One orchestrated pass."""

    scan_id: str
    requested_chains: list[str]
    status: ScanStatus = ScanStatus.RUNNING
    progress: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    output_log: list[str] = field(default_factory=list)
    chain_errors: dict[str, str] = field(default_factory=dict)
    skipped_units: int = 0
    deposits_recorded: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (ScanStatus.COMPLETED, ScanStatus.FAILED)


@dataclass(frozen=True)
class ProgressEvent:
    message: Optional[str] = None
    progress: Optional[int] = None


class ScanOrchestrator:
    """Runs balance snapshot passes, one at a time."""

    def __init__(
        self,
        directory: AddressDirectory,
        engine: BalanceSnapshotEngine,
        writer: DepositLedgerWriter,
        store: SnapshotStore,
        settings: Optional[Settings] = None,
    ):
        self.directory = directory
        self.engine = engine
        self.writer = writer
        self.store = store
        self.settings = settings or get_settings()
        self._runs: dict[str, ScanRun] = {}
        self._current: Optional[ScanRun] = None
        self._task: Optional[asyncio.Task] = None
        self._last_report: dict[str, Any] = store.load()

    @property
    def status(self) -> ScanStatus:
        if self._current is None:
            return ScanStatus.IDLE
        return self._current.status

    @property
    def is_running(self) -> bool:
        return self.status == ScanStatus.RUNNING

    @property
    def current_run(self) -> Optional[ScanRun]:
        return self._current

    @property
    def last_report(self) -> dict[str, Any]:
        """The merged balance report of the last completed pass."""
        return self._last_report

    def get_run(self, scan_id: str) -> Optional[ScanRun]:
        return self._runs.get(scan_id)

    def _create_run(self, chains: list[str]) -> ScanRun:
        if self.is_running:
            raise ScanAlreadyRunning(f"Scan {self._current.scan_id} is already running")

        names = [get_chain(c).name for c in chains]
        run = ScanRun(scan_id=uuid.uuid4().hex[:12], requested_chains=names)
        self._runs[run.scan_id] = run
        self._current = run
        return run

    def start(self, chains: list[str]) -> ScanRun:
        """Schedule a pass in the background.

        Raises:
            ScanAlreadyRunning: If a pass is in progress
        """
        run = self._create_run(chains)
        self._task = asyncio.create_task(self._execute(run))
        return run

    async def run(self, chains: list[str]) -> ScanRun:
        """Run a pass to completion.

        Raises:
            ScanAlreadyRunning: If a pass is in progress
        """
        run = self._create_run(chains)
        return await self._execute(run)

    async def wait(self) -> Optional[ScanRun]:
        """Wait for the background pass, if any."""
        if self._task is not None:
            await self._task
        return self._current

    async def run_periodically(
        self,
        chains: list[str],
        interval: int,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Start a pass every ``interval`` seconds until stopped."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Auto-scan every {interval}s for {', '.join(chains)}")

        while not stop_event.is_set():
            try:
                self.start(chains)
            except ScanAlreadyRunning:
                logger.info("Previous scan still running, skipping this tick")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        await self.wait()

    async def _execute(self, run: ScanRun) -> ScanRun:
        queue: asyncio.Queue = asyncio.Queue()
        consumer = asyncio.create_task(self._consume(run, queue))
        chain_balances: dict[str, dict] = {}
        scanned: list[str] = []

        try:
            await queue.put(ProgressEvent(f"Starting scan of {', '.join(run.requested_chains)}", 0))
            total = len(run.requested_chains)

            for index, chain in enumerate(run.requested_chains):
                balances = await self._scan_chain(run, chain, index, total, queue)
                if balances is not None:
                    chain_balances[chain] = balances
                    scanned.append(chain)

            try:
                self._last_report = self.store.save(chain_balances, scanned)
            except OSError as e:
                logger.error(f"Could not save balance snapshot: {e}")
                await queue.put(ProgressEvent(f"Could not save balance snapshot: {e}"))

            await queue.put(
                ProgressEvent(
                    f"Scan complete: {run.deposits_recorded} deposits, "
                    f"{run.skipped_units} skipped units, {len(run.chain_errors)} chain errors",
                    100,
                )
            )
            run.status = ScanStatus.COMPLETED

        except Exception as e:
            logger.exception(f"Scan {run.scan_id} failed: {e}")
            await queue.put(ProgressEvent(f"Scan failed: {e}"))
            run.status = ScanStatus.FAILED

        finally:
            await queue.put(None)
            await consumer
            run.finished_at = datetime.now(timezone.utc)

        return run

    async def _scan_chain(
        self,
        run: ScanRun,
        chain: str,
        index: int,
        total: int,
        queue: asyncio.Queue,
    ) -> Optional[dict]:
        config = get_chain(chain)
        base = index * 100 // total
        span = 100 // total
        await queue.put(ProgressEvent(f"Scanning {config.display_name}...", base))

        try:
            addresses = await self.directory.resolve(chain)
        except DirectoryUnavailable as e:
            run.chain_errors[chain] = str(e)
            await queue.put(ProgressEvent(f"{config.display_name}: {e}"))
            return None

        baselines = await self.writer.load_baselines(chain)

        def on_progress(_chain: str, done: int, count: int) -> None:
            queue.put_nowait(
                ProgressEvent(
                    f"{config.display_name}: {done}/{count} addresses",
                    base + span * done // max(count, 1),
                )
            )

        try:
            report = await self.engine.scan_chain(chain, addresses, baselines, progress=on_progress)
        except EndpointExhausted as e:
            run.chain_errors[chain] = str(e)
            await queue.put(ProgressEvent(f"{config.display_name} skipped: {e}"))
            return None

        recorded = 0
        for candidate in report.candidates:
            result = await self.writer.write(candidate)
            if result.accepted:
                recorded += 1
        for update in report.updates:
            await self.writer.apply_update(update)

        run.deposits_recorded += recorded
        run.skipped_units += report.skipped_units
        await queue.put(
            ProgressEvent(
                f"{config.display_name}: {report.addresses_scanned} addresses, "
                f"{recorded} deposits, {report.skipped_units} skipped",
                base + span,
            )
        )
        return report.balances

    async def _consume(self, run: ScanRun, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            if event is None:
                break
            if event.progress is not None:
                run.progress = max(run.progress, min(event.progress, 100))
            if event.message:
                run.output_log.append(event.message)
                logger.info(f"[scan {run.scan_id}] {event.message}")
