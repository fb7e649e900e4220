"""Real-time deposit monitor.

Polls the block and slot scanners on a fixed interval and writes every
detected deposit through the ledger writer. The monitored address set is
refreshed from the directory every few minutes.
"""

import asyncio
import logging
import time
from typing import Optional

from depowatch.chains import get_chain
from depowatch.config import Settings, get_settings
from depowatch.directory import AddressDirectory, MonitoredAddress
from depowatch.endpoints import EndpointPool
from depowatch.errors import DirectoryUnavailable, EndpointExhausted
from depowatch.ledger.writer import DepositLedgerWriter, WriteStatus
from depowatch.scanner.base import ChainScanner, ChainScanReport
from depowatch.scanner.blocks import AccountChainBlockScanner
from depowatch.scanner.cursors import CursorStore
from depowatch.scanner.slots import SlotTransactionScanner

logger = logging.getLogger(__name__)


class RealtimeMonitor:
    """Continuous block/slot scanning loop."""

    def __init__(
        self,
        chains: list[str],
        pool: EndpointPool,
        directory: AddressDirectory,
        writer: DepositLedgerWriter,
        cursors: CursorStore,
        settings: Optional[Settings] = None,
    ):
        """Initialize the monitor.

        Args:
            chains: Canonical chain names to watch
            pool: Shared endpoint pool
            directory: Address directory to refresh from
            writer: Ledger writer shared with the batch pass
            cursors: Persisted scanner cursors
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.chains = [get_chain(c).name for c in chains]
        self.pool = pool
        self.directory = directory
        self.writer = writer
        self.cursors = cursors
        self.addresses: dict[str, list[MonitoredAddress]] = {}
        self.scanners: dict[str, ChainScanner] = {}
        self._last_refresh: Optional[float] = None
        self._stop = asyncio.Event()

    async def _get_scanner(self, chain: str) -> ChainScanner:
        if chain not in self.scanners:
            config = get_chain(chain)
            if config.is_account_chain:
                self.scanners[chain] = AccountChainBlockScanner(
                    config, self.pool, self.cursors, self.settings.min_deposit_value
                )
            else:
                seen = await self.writer.load_processed_keys(chain)
                self.scanners[chain] = SlotTransactionScanner(
                    self.pool,
                    self.cursors,
                    min_value=self.settings.min_deposit_value,
                    signature_limit=self.settings.signature_limit,
                    seen_signatures=seen,
                    chain=config,
                )
        return self.scanners[chain]

    async def refresh_addresses(self, force: bool = False) -> None:
        """Reload monitored addresses if the refresh interval elapsed."""
        now = time.monotonic()
        if (
            not force
            and self._last_refresh is not None
            and now - self._last_refresh < self.settings.directory_refresh_interval
        ):
            return

        for chain in self.chains:
            try:
                self.addresses[chain] = await self.directory.resolve(chain)
            except DirectoryUnavailable as e:
                # Keep monitoring the previous set
                logger.error(f"Address refresh failed for {chain}: {e}")
                continue
            logger.info(f"Monitoring {len(self.addresses[chain])} {chain} addresses")
        self._last_refresh = now

    async def scan_once(self) -> dict[str, ChainScanReport]:
        """Run one scan cycle over every chain.

        Returns:
            Reports of the chains that could be scanned
        """
        await self.refresh_addresses()

        reports: dict[str, ChainScanReport] = {}
        for chain in self.chains:
            scanner = await self._get_scanner(chain)
            try:
                report = await scanner.scan(self.addresses.get(chain, []))
            except EndpointExhausted as e:
                logger.warning(f"Skipping {chain} this cycle: {e}")
                continue
            except Exception as e:
                logger.exception(f"Error scanning {chain}, skipping this cycle: {e}")
                continue

            for candidate in report.candidates:
                result = await self.writer.write(candidate)
                if result.status == WriteStatus.DUPLICATE:
                    logger.debug(f"Skipping already processed tx: {candidate.tx_hash}")

            reports[chain] = report
        return reports

    async def run(self) -> None:
        """Run the continuous scanning loop until stopped."""
        logger.info(
            f"Starting real-time monitor for {', '.join(self.chains)} "
            f"(interval: {self.settings.polling_interval}s)"
        )

        while not self._stop.is_set():
            try:
                reports = await self.scan_once()
                found = sum(len(r.candidates) for r in reports.values())
                if found:
                    logger.info(f"Detected {found} new deposits")
            except Exception as e:
                logger.error(f"Monitor error: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.settings.polling_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Real-time monitor stopped")

    def stop(self) -> None:
        self._stop.set()
