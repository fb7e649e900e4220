"""Chain scanners for real-time deposit detection."""

from depowatch.scanner.base import (
    BalanceUpdate,
    ChainScanner,
    ChainScanReport,
    DepositCandidate,
    UnitOutcome,
)
from depowatch.scanner.blocks import AccountChainBlockScanner
from depowatch.scanner.cursors import CursorStore
from depowatch.scanner.slots import SlotTransactionScanner

__all__ = [
    "BalanceUpdate",
    "ChainScanner",
    "ChainScanReport",
    "DepositCandidate",
    "UnitOutcome",
    "AccountChainBlockScanner",
    "CursorStore",
    "SlotTransactionScanner",
]
