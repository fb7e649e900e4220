"""Tests for the scan orchestrator."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from depowatch.directory import AddressDirectory
from depowatch.errors import DirectoryUnavailable, ScanAlreadyRunning
from depowatch.ledger.database import get_db
from depowatch.ledger.repository import LedgerRepository
from depowatch.ledger.writer import DepositLedgerWriter
from depowatch.orchestrator import ScanOrchestrator, ScanStatus
from depowatch.snapshot.engine import BalanceSnapshotEngine
from depowatch.snapshot.store import SnapshotStore

ETH_WALLET = "0x" + "12" * 20
BSC_WALLET = "0x" + "34" * 20
SOL_WALLET = "So11111111111111111111111111111111111111112"


@pytest.fixture
def directory(session_factory) -> AddressDirectory:
    return AddressDirectory(session_factory)


@pytest.fixture
def writer(session_factory, settings) -> DepositLedgerWriter:
    return DepositLedgerWriter(session_factory, settings)


@pytest.fixture
def store(settings) -> SnapshotStore:
    return SnapshotStore(settings.snapshot_file)


@pytest.fixture
def orchestrator(directory, pool, writer, store, settings) -> ScanOrchestrator:
    return ScanOrchestrator(directory, BalanceSnapshotEngine(pool, settings), writer, store, settings)


@pytest_asyncio.fixture
async def registered(directory):
    await directory.register("eth-user", "ethereum", ETH_WALLET)
    await directory.register("bsc-user", "bsc", BSC_WALLET)
    await directory.register("sol-user", "solana", SOL_WALLET)


async def all_deposits(session_factory) -> list:
    async with get_db(session_factory) as session:
        return await LedgerRepository(session).get_deposits()


class TestScanPass:
    """Tests for a full orchestrated pass."""

    @pytest.mark.asyncio
    async def test_deposit_recorded(self, orchestrator, network, session_factory, registered):
        """A native balance going from 0 to 1.5 yields one record."""
        network.native[("ethereum", ETH_WALLET)] = Decimal("1.5")

        run = await orchestrator.run(["ethereum"])

        assert run.status == ScanStatus.COMPLETED
        assert run.progress == 100
        assert run.deposits_recorded == 1
        assert run.finished_at is not None
        records = await all_deposits(session_factory)
        assert len(records) == 1
        assert records[0].amount == Decimal("1.5")
        assert records[0].previous_balance == Decimal("0")
        assert records[0].new_balance == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, orchestrator, network, session_factory, registered):
        network.native[("ethereum", ETH_WALLET)] = Decimal("1.5")

        await orchestrator.run(["ethereum"])
        second = await orchestrator.run(["ethereum"])

        assert second.deposits_recorded == 0
        assert len(await all_deposits(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_tiny_increase_ignored(self, orchestrator, network, session_factory, registered):
        network.native[("ethereum", ETH_WALLET)] = Decimal("1.5")
        await orchestrator.run(["ethereum"])

        network.native[("ethereum", ETH_WALLET)] = Decimal("1.5000005")
        run = await orchestrator.run(["ethereum"])

        assert run.deposits_recorded == 0

    @pytest.mark.asyncio
    async def test_unreachable_chain_does_not_fail_pass(
        self, orchestrator, network, session_factory, registered
    ):
        """One chain with every endpoint down is skipped, the others complete."""
        network.down.update({"https://bsc-primary.test", "https://bsc-backup.test"})
        network.native[("ethereum", ETH_WALLET)] = Decimal("1")
        network.native[("solana", SOL_WALLET)] = Decimal("2")

        run = await orchestrator.run(["ethereum", "bsc", "solana"])

        assert run.status == ScanStatus.COMPLETED
        assert set(run.chain_errors) == {"bsc"}
        assert run.deposits_recorded == 2
        assert set(orchestrator.last_report["balances"]) == {"ethereum", "solana"}

    @pytest.mark.asyncio
    async def test_directory_failure_isolated(self, orchestrator, directory, network, registered):
        real_resolve = directory.resolve

        async def resolve(chain):
            if chain == "solana":
                raise DirectoryUnavailable("directory offline")
            return await real_resolve(chain)

        directory.resolve = resolve
        network.native[("ethereum", ETH_WALLET)] = Decimal("1")

        run = await orchestrator.run(["ethereum", "solana"])

        assert run.status == ScanStatus.COMPLETED
        assert run.chain_errors == {"solana": "directory offline"}
        assert run.deposits_recorded == 1

    @pytest.mark.asyncio
    async def test_ledger_failure_fails_pass(self, orchestrator, writer, registered):
        writer.load_baselines = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("unable to open database"))
        )

        run = await orchestrator.run(["ethereum"])

        assert run.status == ScanStatus.FAILED
        assert orchestrator.status == ScanStatus.FAILED
        assert any("failed" in line for line in run.output_log)

    @pytest.mark.asyncio
    async def test_skipped_units_counted(self, orchestrator, network, registered):
        network.failing_tokens.add(("ethereum", ETH_WALLET, "DAI"))

        run = await orchestrator.run(["ethereum"])

        assert run.status == ScanStatus.COMPLETED
        assert run.skipped_units == 1

    @pytest.mark.asyncio
    async def test_snapshot_saved(self, orchestrator, network, store, registered):
        network.native[("solana", SOL_WALLET)] = Decimal("3")

        await orchestrator.run(["solana"])

        saved = store.load()
        assert saved["chains_scanned"] == ["solana"]
        assert saved["balances"]["solana"][SOL_WALLET]["balances"]["SOL"] == "3"


class TestRunLifecycle:
    """Tests for the idle/running/terminal states."""

    @pytest.mark.asyncio
    async def test_idle_before_first_run(self, orchestrator):
        assert orchestrator.status == ScanStatus.IDLE
        assert orchestrator.current_run is None

    @pytest.mark.asyncio
    async def test_start_runs_in_background(self, orchestrator, network, registered):
        network.native[("ethereum", ETH_WALLET)] = Decimal("1")

        run = orchestrator.start(["eth"])

        assert run.status == ScanStatus.RUNNING
        assert run.requested_chains == ["ethereum"]
        assert orchestrator.get_run(run.scan_id) is run

        finished = await orchestrator.wait()
        assert finished is run
        assert run.status == ScanStatus.COMPLETED
        assert run.output_log

    @pytest.mark.asyncio
    async def test_reentrant_start_rejected(self, orchestrator, directory, registered):
        gate = asyncio.Event()
        real_resolve = directory.resolve

        async def slow_resolve(chain):
            await gate.wait()
            return await real_resolve(chain)

        directory.resolve = slow_resolve

        orchestrator.start(["ethereum"])
        with pytest.raises(ScanAlreadyRunning):
            orchestrator.start(["solana"])
        with pytest.raises(ScanAlreadyRunning):
            await orchestrator.run(["solana"])

        gate.set()
        run = await orchestrator.wait()
        assert run.status == ScanStatus.COMPLETED

        # A new pass may start once the previous one finished
        second = await orchestrator.run(["solana"])
        assert second.status == ScanStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_periodic_skips_while_running(self, orchestrator, directory, registered):
        gate = asyncio.Event()
        real_resolve = directory.resolve

        async def slow_resolve(chain):
            await gate.wait()
            return await real_resolve(chain)

        directory.resolve = slow_resolve
        stop = asyncio.Event()

        task = asyncio.create_task(orchestrator.run_periodically(["ethereum"], 0.01, stop))
        await asyncio.sleep(0.05)
        runs_while_blocked = len(orchestrator._runs)
        stop.set()
        gate.set()
        await task

        assert runs_while_blocked == 1
