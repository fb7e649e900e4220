"""Signature scanner for Solana.

Solana deposits are inferred from the pre/post lamport balances of the
monitored account inside each transaction, looked up through the address's
most recent signatures.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional

from depowatch.chains import ChainConfig, to_decimal
from depowatch.directory import MonitoredAddress
from depowatch.endpoints import EndpointPool
from depowatch.errors import EndpointExhausted
from depowatch.ledger.models import DetectionMethod
from depowatch.rpc.base import RpcError
from depowatch.rpc.solana import SignatureInfo, SolanaTransaction
from depowatch.scanner.base import ChainScanner, ChainScanReport, DepositCandidate
from depowatch.scanner.cursors import CursorStore

logger = logging.getLogger(__name__)


class SlotTransactionScanner(ChainScanner):
    """Recent-signature scanner, deduplicated per (signature, address)."""

    def __init__(
        self,
        pool: EndpointPool,
        cursors: CursorStore,
        min_value: Decimal = Decimal("0.000001"),
        signature_limit: int = 10,
        seen_signatures: Optional[set[tuple[str, str]]] = None,
        chain: str | ChainConfig = "solana",
    ):
        super().__init__(chain, min_value)
        if self.chain.is_account_chain:
            raise ValueError(f"{self.chain.name} is not a slot-based chain")
        self.pool = pool
        self.cursors = cursors
        self.signature_limit = signature_limit
        self.seen_signatures: set[tuple[str, str]] = (
            seen_signatures if seen_signatures is not None else set()
        )

    async def scan(self, addresses: Iterable[MonitoredAddress]) -> ChainScanReport:
        report = ChainScanReport(chain=self.name)
        watched = self.watched(addresses)

        current = await self.pool.call(self.name, lambda c: c.get_current_height())
        cursor = await self.cursors.get(self.name)

        if cursor is None:
            # First run: older signatures are history, not new deposits
            await self.cursors.initialize(self.name, current)
            report.initialized = True
            report.end_height = current
            return report

        report.start_height = cursor.height + 1
        # Transactions touching several watched addresses are fetched once per pass
        fetched: dict[str, SolanaTransaction] = {}
        for address, owner in watched.items():
            try:
                signatures = await self.pool.call(
                    self.name,
                    lambda c: c.get_signatures_for_address(address, self.signature_limit),
                )
            except (RpcError, EndpointExhausted) as e:
                report.skip(f"address {address}", e)
                continue

            for info in signatures:
                await self._process_signature(info, owner, cursor.origin_height, fetched, report)

        report.end_height = await self.cursors.advance(self.name, current)
        return report

    async def _fetch_transaction(
        self, signature: str, fetched: dict[str, SolanaTransaction]
    ) -> Optional[SolanaTransaction]:
        if signature not in fetched:
            tx = await self.pool.call(self.name, lambda c: c.get_transaction(signature))
            if tx is None:
                return None
            fetched[signature] = tx
        return fetched[signature]

    async def _process_signature(
        self,
        info: SignatureInfo,
        owner: MonitoredAddress,
        origin: int,
        fetched: dict[str, SolanaTransaction],
        report: ChainScanReport,
    ) -> None:
        # Seen per (signature, address): one transaction may concern several watched wallets
        key = (info.signature, owner.address)
        if key in self.seen_signatures:
            return
        if info.slot <= origin or info.failed:
            self.seen_signatures.add(key)
            return

        try:
            tx = await self._fetch_transaction(info.signature, fetched)
        except (RpcError, EndpointExhausted) as e:
            report.skip(f"signature {info.signature}", e)
            return

        if tx is None:
            # Not yet available at this commitment; retried next pass
            report.skip(f"signature {info.signature}", "transaction not available")
            return

        self.seen_signatures.add(key)
        if tx.failed:
            return

        lamports = tx.lamport_delta(owner.address)
        if lamports is None or lamports <= 0:
            return

        amount = to_decimal(lamports, self.chain.native_decimals)
        if amount < self.min_value:
            return

        report.candidates.append(
            DepositCandidate(
                chain=self.name,
                wallet_address=owner.address,
                user_id=owner.user_id,
                token=self.chain.native_symbol,
                amount=amount,
                detection_method=DetectionMethod.TRANSACTION,
                tx_hash=info.signature,
                counterparty_address=tx.first_debited_account(),
                block_height=tx.slot,
                block_time=tx.block_time,
            )
        )
        logger.info(
            f"New SOL deposit: {amount} to {owner.address} "
            f"(user {owner.user_id}, slot {tx.slot}, sig {info.signature[:16]}...)"
        )
