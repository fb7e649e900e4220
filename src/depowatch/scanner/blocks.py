"""Block scanner for the account chains (Ethereum, BSC).

Walks every block from the cursor to the chain head and picks out native
transfers to monitored addresses. Token balances are left to the snapshot
engine.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from depowatch.chains import ChainConfig, to_decimal
from depowatch.directory import MonitoredAddress
from depowatch.endpoints import EndpointPool
from depowatch.errors import BlockFetchError, EndpointExhausted
from depowatch.ledger.models import DetectionMethod
from depowatch.rpc.base import RpcError
from depowatch.scanner.base import ChainScanner, ChainScanReport, DepositCandidate
from depowatch.scanner.cursors import CursorStore

logger = logging.getLogger(__name__)


class AccountChainBlockScanner(ChainScanner):
    """Block-range scanner shared by the EVM-style chains."""

    def __init__(
        self,
        chain: str | ChainConfig,
        pool: EndpointPool,
        cursors: CursorStore,
        min_value: Decimal = Decimal("0.000001"),
    ):
        super().__init__(chain, min_value)
        if not self.chain.is_account_chain:
            raise ValueError(f"{self.chain.name} is not an account chain")
        self.pool = pool
        self.cursors = cursors

    def watched(self, addresses: Iterable[MonitoredAddress]) -> dict[str, MonitoredAddress]:
        return {a.address.lower(): a for a in addresses if a.chain == self.name}

    async def scan(self, addresses: Iterable[MonitoredAddress]) -> ChainScanReport:
        report = ChainScanReport(chain=self.name)
        watched = self.watched(addresses)

        current = await self.pool.call(self.name, lambda c: c.get_current_height())
        cursor = await self.cursors.get(self.name)

        if cursor is None:
            # First run: start at the head, no historical backfill
            await self.cursors.initialize(self.name, current)
            report.initialized = True
            report.end_height = current
            return report

        report.start_height = cursor.height + 1
        report.end_height = cursor.height
        if current <= cursor.height:
            return report

        if not watched:
            report.end_height = await self.cursors.advance(self.name, current)
            return report

        logger.info(
            f"Scanning {self.chain.display_name} blocks {cursor.height + 1} to {current} "
            f"({len(watched)} addresses)"
        )

        last_attempted = cursor.height
        for height in range(cursor.height + 1, current + 1):
            try:
                await self._scan_block(height, watched, report)
            except EndpointExhausted as e:
                # Every endpoint is down; stop here so later blocks stay unattempted
                report.skip(f"block {height}", e)
                break
            except BlockFetchError as e:
                report.skip(f"block {height}", e)
            last_attempted = height

        report.end_height = await self.cursors.advance(self.name, last_attempted)
        return report

    async def _scan_block(
        self, height: int, watched: dict[str, MonitoredAddress], report: ChainScanReport
    ) -> None:
        try:
            block = await self.pool.call(self.name, lambda c: c.get_block(height, True))
        except RpcError as e:
            raise BlockFetchError(self.name, height, str(e)) from e
        except (ValueError, KeyError, TypeError) as e:
            # Malformed block body
            raise BlockFetchError(self.name, height, f"unreadable block: {e}") from e

        if block is None:
            raise BlockFetchError(self.name, height, "block not available")

        for tx in block.transactions:
            if not tx.to_address or tx.to_address not in watched:
                continue

            amount = to_decimal(tx.value_wei, self.chain.native_decimals)
            if amount < self.min_value:
                continue

            owner = watched[tx.to_address]
            candidate = DepositCandidate(
                chain=self.name,
                wallet_address=owner.address,
                user_id=owner.user_id,
                token=self.chain.native_symbol,
                amount=amount,
                detection_method=DetectionMethod.TRANSACTION,
                tx_hash=tx.hash,
                counterparty_address=tx.from_address or None,
                block_height=block.number,
                block_time=block.timestamp,
            )
            report.candidates.append(candidate)

            block_time = datetime.fromtimestamp(block.timestamp, tz=timezone.utc)
            logger.info(
                f"New {self.chain.native_symbol} deposit: {amount} to {owner.address} "
                f"(user {owner.user_id}, block {block.number}, {block_time.isoformat()}, "
                f"tx {tx.hash[:16]}...)"
            )
