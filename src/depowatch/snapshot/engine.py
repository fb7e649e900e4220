"""Balance snapshot engine.

Fetches the current native and token balances of every monitored address and
diffs them against the stored baselines. Increases above the noise threshold
become balance-diff deposit candidates; decreases only supersede the stored
snapshot.

Addresses are processed in fixed-size batches, one batch after another, with
bounded concurrency inside a batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional, Sequence

from depowatch.chains import ChainConfig, TokenConfig, canonical_symbol, get_chain
from depowatch.config import Settings, get_settings
from depowatch.directory import MonitoredAddress
from depowatch.endpoints import EndpointPool
from depowatch.errors import EndpointExhausted
from depowatch.ledger.models import DetectionMethod
from depowatch.rpc.base import RpcError
from depowatch.scanner.base import BalanceUpdate, DepositCandidate, UnitOutcome

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


def held_token_symbol(chain: ChainConfig, mint: str) -> str:
    """Canonical symbol of an SPL mint outside the allow-list."""
    token = chain.find_token(mint)
    if token is not None:
        return canonical_symbol(token.symbol)
    return canonical_symbol(f"SPL-{mint}")


@dataclass
class AddressSnapshot:
    """Balances fetched for one address in one pass."""

    address: MonitoredAddress
    balances: dict[str, Decimal] = field(default_factory=dict)
    outcomes: list[UnitOutcome] = field(default_factory=list)
    # True once the held-token listing succeeded
    complete_holdings: bool = False


@dataclass
class ChainSnapshotReport:
    """Result of one snapshot pass over a chain."""

    chain: str
    candidates: list[DepositCandidate] = field(default_factory=list)
    updates: list[BalanceUpdate] = field(default_factory=list)
    outcomes: list[UnitOutcome] = field(default_factory=list)
    balances: dict[str, dict] = field(default_factory=dict)
    addresses_scanned: int = 0

    @property
    def skipped_units(self) -> int:
        return len(self.outcomes)


class BalanceSnapshotEngine:
    """Detects deposits by comparing balances between passes."""

    def __init__(self, pool: EndpointPool, settings: Optional[Settings] = None):
        self.pool = pool
        self.settings = settings or get_settings()

    @property
    def epsilon(self) -> Decimal:
        return self.settings.noise_threshold

    async def scan_chain(
        self,
        chain: str,
        addresses: Sequence[MonitoredAddress],
        baselines: dict[tuple[str, str], Decimal],
        progress: Optional[ProgressCallback] = None,
    ) -> ChainSnapshotReport:
        """Snapshot every address of a chain and diff against the baselines.

        Raises:
            EndpointExhausted: If no endpoint of the chain answers the probe
        """
        config = get_chain(chain)
        report = ChainSnapshotReport(chain=config.name)
        addresses = [a for a in addresses if a.chain == config.name]

        # Skip the whole chain early when nothing answers
        await self.pool.acquire(config.name)

        if not addresses:
            logger.info(f"No {config.display_name} addresses to scan")
            return report

        batch_size = max(1, self.settings.batch_size)
        semaphore = asyncio.Semaphore(max(1, self.settings.max_workers))
        total = len(addresses)

        async def fetch(address: MonitoredAddress) -> AddressSnapshot:
            async with semaphore:
                return await self._fetch_address(config, address)

        for start in range(0, total, batch_size):
            batch = addresses[start:start + batch_size]
            batch_number = start // batch_size + 1
            logger.info(
                f"Processing {config.display_name} batch {batch_number} "
                f"({len(batch)} addresses)"
            )
            snapshots = await asyncio.gather(*(fetch(a) for a in batch))

            for snapshot in snapshots:
                self._diff(config, snapshot, baselines, report)

            done = min(start + batch_size, total)
            if progress is not None:
                progress(config.name, done, total)

        logger.info(
            f"{config.display_name} snapshot complete: {len(report.candidates)} deposits, "
            f"{report.skipped_units} skipped"
        )
        return report

    async def _fetch_address(self, chain: ChainConfig, address: MonitoredAddress) -> AddressSnapshot:
        snapshot = AddressSnapshot(address=address)

        native = canonical_symbol(chain.native_symbol)
        try:
            snapshot.balances[native] = await self.pool.call(
                chain.name, lambda c: c.get_native_balance(address.address)
            )
        except (RpcError, EndpointExhausted) as e:
            snapshot.outcomes.append(self._skip(chain, address, native, e))

        for token in chain.tokens:
            await self._fetch_token(chain, address, token, snapshot)

        if not chain.is_account_chain:
            await self._fetch_held_tokens(chain, address, snapshot)

        return snapshot

    async def _fetch_token(
        self,
        chain: ChainConfig,
        address: MonitoredAddress,
        token: TokenConfig,
        snapshot: AddressSnapshot,
    ) -> None:
        symbol = canonical_symbol(token.symbol)
        try:
            snapshot.balances[symbol] = await self.pool.call(
                chain.name, lambda c: c.get_token_balance(address.address, token)
            )
        except (RpcError, EndpointExhausted) as e:
            snapshot.outcomes.append(self._skip(chain, address, symbol, e))

    async def _fetch_held_tokens(
        self, chain: ChainConfig, address: MonitoredAddress, snapshot: AddressSnapshot
    ) -> None:
        try:
            holdings = await self.pool.call(
                chain.name, lambda c: c.get_token_accounts(address.address)
            )
        except (RpcError, EndpointExhausted) as e:
            snapshot.outcomes.append(self._skip(chain, address, "held tokens", e))
            return

        held: dict[str, Decimal] = {}
        for holding in holdings:
            if chain.find_token(holding.mint) is not None:
                continue  # already fetched from the allow-list
            symbol = held_token_symbol(chain, holding.mint)
            held[symbol] = held.get(symbol, Decimal("0")) + holding.amount

        snapshot.balances.update(held)
        snapshot.complete_holdings = True

    def _skip(
        self, chain: ChainConfig, address: MonitoredAddress, token: str, error: BaseException
    ) -> UnitOutcome:
        logger.warning(f"[{chain.name}] skipped {address.address} {token}: {error}")
        return UnitOutcome(
            chain=chain.name,
            unit=f"{address.address} {token}",
            error=str(error),
            kind=type(error).__name__,
        )

    def _diff(
        self,
        chain: ChainConfig,
        snapshot: AddressSnapshot,
        baselines: dict[tuple[str, str], Decimal],
        report: ChainSnapshotReport,
    ) -> None:
        address = snapshot.address
        report.addresses_scanned += 1
        report.outcomes.extend(snapshot.outcomes)

        current = dict(snapshot.balances)
        if snapshot.complete_holdings:
            # Previously held tokens that disappeared from the account list
            for baseline_address, token in baselines:
                if baseline_address == address.address and token.startswith("SPL-"):
                    current.setdefault(token, Decimal("0"))

        for token, amount in current.items():
            previous = baselines.get((address.address, token), Decimal("0"))
            delta = amount - previous

            if delta > self.epsilon:
                report.candidates.append(
                    DepositCandidate(
                        chain=chain.name,
                        wallet_address=address.address,
                        user_id=address.user_id,
                        token=token,
                        amount=delta,
                        detection_method=DetectionMethod.BALANCE_DIFF,
                        previous_balance=previous,
                        new_balance=amount,
                    )
                )
                logger.info(
                    f"Balance increase on {address.address}: {delta} {token} "
                    f"({previous} -> {amount})"
                )
            elif delta < -self.epsilon:
                report.updates.append(
                    BalanceUpdate(
                        chain=chain.name,
                        wallet_address=address.address,
                        user_id=address.user_id,
                        token=token,
                        previous_balance=previous,
                        new_balance=amount,
                    )
                )

        report.balances[address.address] = {
            "user_id": address.user_id,
            "label": address.label,
            "balances": {token: str(amount) for token, amount in sorted(snapshot.balances.items())},
        }
