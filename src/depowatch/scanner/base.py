"""Base interface and result types for deposit scanners.

Scanners never write to the ledger themselves. Each pass returns a
``ChainScanReport`` with the candidate deposits it found and one
``UnitOutcome`` per unit of work (block, address, signature) that failed.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from depowatch.chains import ChainConfig, get_chain
from depowatch.directory import MonitoredAddress
from depowatch.ledger.models import DetectionMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepositCandidate:
    """A detected deposit, not yet written to the ledger."""

    chain: str
    wallet_address: str
    user_id: str
    token: str
    amount: Decimal
    detection_method: DetectionMethod
    tx_hash: Optional[str] = None
    counterparty_address: Optional[str] = None
    block_height: Optional[int] = None
    block_time: Optional[int] = None
    previous_balance: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None

    @property
    def is_transaction(self) -> bool:
        return self.detection_method == DetectionMethod.TRANSACTION


@dataclass(frozen=True)
class BalanceUpdate:
    """A balance decrease that only supersedes the stored snapshot."""

    chain: str
    wallet_address: str
    user_id: str
    token: str
    previous_balance: Decimal
    new_balance: Decimal


@dataclass(frozen=True)
class UnitOutcome:
    """A unit of work (block, address, token, signature) that was skipped."""

    chain: str
    unit: str
    error: str
    kind: str = "skipped"


@dataclass
class ChainScanReport:
    """Result of one scanner pass over a chain."""

    chain: str
    start_height: Optional[int] = None
    end_height: Optional[int] = None
    initialized: bool = False
    candidates: list[DepositCandidate] = field(default_factory=list)
    outcomes: list[UnitOutcome] = field(default_factory=list)

    def skip(self, unit: str, error: BaseException | str) -> UnitOutcome:
        """Record a skipped unit of work."""
        kind = type(error).__name__ if isinstance(error, BaseException) else "skipped"
        outcome = UnitOutcome(chain=self.chain, unit=unit, error=str(error), kind=kind)
        self.outcomes.append(outcome)
        logger.warning(f"[{self.chain}] skipped {unit}: {error}")
        return outcome

    @property
    def skipped_units(self) -> int:
        return len(self.outcomes)


class ChainScanner(ABC):
    """Abstract base class for chain transaction scanners."""

    def __init__(self, chain: str | ChainConfig, min_value: Decimal):
        self.chain = chain if isinstance(chain, ChainConfig) else get_chain(chain)
        self.min_value = min_value

    @property
    def name(self) -> str:
        return self.chain.name

    def watched(self, addresses: Iterable[MonitoredAddress]) -> dict[str, MonitoredAddress]:
        """Index this chain's monitored addresses by address."""
        return {a.address: a for a in addresses if a.chain == self.name}

    @abstractmethod
    async def scan(self, addresses: Iterable[MonitoredAddress]) -> ChainScanReport:
        """Run one pass and return the candidates found.

        Raises:
            EndpointExhausted: If the chain cannot be reached at all
        """
        pass
